from __future__ import annotations

import logging
import random
import uuid
from threading import RLock
from typing import List, Optional

from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.frontend_optimization import (
    AssetOptimization,
    BundleOptimization,
    FrontendOptimizationBreakdown,
    FrontendOptimizationStatus,
    FrontendPerformanceAnalysis,
    FrontendWorkItem,
    RenderingOptimization,
)
from src.dashboard.services.monitoring_service import PerformanceMonitoringService
from src.dashboard.services.work_items import (
    breakdown,
    claim_pending,
    merge_generated,
    simulate_work,
    simulated_delay,
    summarize,
)

logger = logging.getLogger(__name__)

# (page, load ms, render ms, bundle KB, assets)
PAGE_PATTERNS = (
    ("/users", 1200, 300, 256, 8),
    ("/reports", 3500, 1200, 1024, 25),
    ("/settings", 800, 200, 128, 5),
)

# Assumed for the live dashboard page, which only reports load time.
DASHBOARD_BUNDLE_KB = 512
DASHBOARD_ASSETS = 15

_RECOMMENDATIONS = {
    "Slow page load time": [
        "Implement code splitting and lazy loading",
        "Optimize bundle size with tree shaking",
        "Enable asset compression and CDN deployment",
        "Implement service worker for caching",
    ],
    "Slow rendering time": [
        "Implement React.memo and useMemo for components",
        "Add virtualization for long lists",
        "Optimize state management and reduce re-renders",
    ],
    "Large bundle size": [
        "Split vendor and application bundles",
        "Implement dynamic imports for routes",
        "Remove unused dependencies",
    ],
    "High asset count": [
        "Combine and minify CSS/JS files",
        "Implement asset bundling and optimization",
        "Use image sprites and icon fonts",
    ],
    "Moderate load time": [
        "Consider implementing progressive loading",
        "Review and optimize critical rendering path",
    ],
}


def _new_id() -> str:
    return f"fe_opt_{uuid.uuid4().hex[:16]}"


def optimization_score(load: float, render: float, bundle: float, assets: int) -> int:
    score = 0
    if load > 3000:
        score += 40
    elif load > 2000:
        score += 30
    elif load > 1000:
        score += 20
    elif load > 500:
        score += 10

    if render > load * 0.5:
        score += 20
    elif render > load * 0.3:
        score += 10

    if bundle > 1000:
        score += 25
    elif bundle > 500:
        score += 15
    elif bundle > 250:
        score += 10

    if assets > 20:
        score += 15
    elif assets > 15:
        score += 10
    elif assets > 10:
        score += 5
    return min(score, 100)


def detect_bottlenecks(load: float, render: float, bundle: float, assets: int) -> List[str]:
    labels = []
    if load > 2000:
        labels.append("Slow page load time")
    if render > load * 0.4:
        labels.append("Slow rendering time")
    if bundle > 500:
        labels.append("Large bundle size")
    if assets > 15:
        labels.append("High asset count")
    if 1000 < load <= 2000:
        labels.append("Moderate load time")
    return labels


def estimated_improvement(score: int) -> int:
    if score >= 80:
        return 70
    if score >= 60:
        return 50
    if score >= 40:
        return 30
    if score >= 20:
        return 15
    return 5


def analyze_page(page: str, load: float, render: float, bundle: float, assets: int) -> FrontendPerformanceAnalysis:
    score = optimization_score(load, render, bundle, assets)
    labels = detect_bottlenecks(load, render, bundle, assets)
    recommendations = [r for label in labels for r in _RECOMMENDATIONS[label]]
    return FrontendPerformanceAnalysis(
        id=_new_id(),
        page=page,
        load_time=load,
        render_time=render,
        bundle_size=bundle,
        asset_count=assets,
        optimization_score=score,
        bottlenecks=labels,
        recommendations=recommendations or ["Frontend performance appears to be well-optimized"],
        estimated_improvement=estimated_improvement(score),
    )


def bundle_optimizations_for(a: FrontendPerformanceAnalysis) -> List[BundleOptimization]:
    opts = []
    if a.bundle_size > 500:
        opts.append(BundleOptimization(
            id=_new_id(), target="main_bundle", optimization_type="code_splitting",
            description="Split main bundle into smaller, route-based chunks",
            estimated_improvement=40, implementation_complexity="medium",
        ))
        opts.append(BundleOptimization(
            id=_new_id(), target="vendor_bundle", optimization_type="tree_shaking",
            description="Remove unused code from vendor dependencies",
            estimated_improvement=25, implementation_complexity="low",
        ))
    if a.load_time > 2000:
        opts.append(BundleOptimization(
            id=_new_id(), target="chunk_bundle", optimization_type="lazy_loading",
            description="Implement lazy loading for non-critical components",
            estimated_improvement=35, implementation_complexity="medium",
        ))
    if a.bundle_size > 250:
        opts.append(BundleOptimization(
            id=_new_id(), target="main_bundle", optimization_type="minification",
            description="Enable advanced minification and compression",
            estimated_improvement=20, implementation_complexity="low",
        ))
    return opts


def asset_optimizations_for(a: FrontendPerformanceAnalysis) -> List[AssetOptimization]:
    opts = []
    if a.asset_count > 10:
        opts.append(AssetOptimization(
            id=_new_id(), target="css", optimization_type="compression",
            description="Minify and compress CSS files",
            estimated_improvement=15, implementation_complexity="low",
        ))
        opts.append(AssetOptimization(
            id=_new_id(), target="javascript", optimization_type="compression",
            description="Minify and compress JavaScript files",
            estimated_improvement=15, implementation_complexity="low",
        ))
    if a.load_time > 1500:
        opts.append(AssetOptimization(
            id=_new_id(), target="images", optimization_type="compression",
            description="Optimize and compress images",
            estimated_improvement=25, implementation_complexity="medium",
        ))
        opts.append(AssetOptimization(
            id=_new_id(), target="static_files", optimization_type="cdn_deployment",
            description="Deploy static assets to CDN",
            estimated_improvement=30, implementation_complexity="medium",
        ))
    if a.asset_count > 15:
        opts.append(AssetOptimization(
            id=_new_id(), target="fonts", optimization_type="format_conversion",
            description="Convert fonts to modern formats (woff2)",
            estimated_improvement=20, implementation_complexity="low",
        ))
    return opts


def rendering_optimizations_for(a: FrontendPerformanceAnalysis) -> List[RenderingOptimization]:
    opts = []
    if a.render_time > a.load_time * 0.3:
        opts.append(RenderingOptimization(
            id=_new_id(), target="react_components", optimization_type="memoization",
            description="Implement React.memo and useMemo for expensive components",
            estimated_improvement=30, implementation_complexity="medium",
        ))
        opts.append(RenderingOptimization(
            id=_new_id(), target="state_management", optimization_type="code_splitting",
            description="Optimize state management and reduce unnecessary re-renders",
            estimated_improvement=25, implementation_complexity="high",
        ))
    if a.load_time > 2000:
        opts.append(RenderingOptimization(
            id=_new_id(), target="dom_manipulation", optimization_type="virtualization",
            description="Implement virtualization for long lists and tables",
            estimated_improvement=40, implementation_complexity="high",
        ))
    if a.asset_count > 10:
        opts.append(RenderingOptimization(
            id=_new_id(), target="event_handling", optimization_type="debouncing",
            description="Implement debouncing for frequent events (scroll, resize)",
            estimated_improvement=20, implementation_complexity="low",
        ))
    return opts


class FrontendOptimizationService:
    """Scores frontend pages and generates (simulated) bundle, asset and rendering work."""

    def __init__(
        self,
        monitoring: PerformanceMonitoringService,
        time_scale: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        self._monitoring = monitoring
        self._time_scale = time_scale
        self._rng = rng or random.Random()
        self._analyses: List[FrontendPerformanceAnalysis] = []
        self._bundle: List[BundleOptimization] = []
        self._asset: List[AssetOptimization] = []
        self._rendering: List[RenderingOptimization] = []
        self._lock = RLock()

    # PUBLIC_INTERFACE
    def analyze(self) -> List[FrontendPerformanceAnalysis]:
        """Analyse the live dashboard page (when load times were reported) and the sample pages."""
        analyses = []
        frontend = self._monitoring.get_metrics_summary().frontend
        load = frontend.load_time.current
        if load:
            render = frontend.render_time.current or load * 0.3
            analyses.append(analyze_page("/dashboard", load, render, DASHBOARD_BUNDLE_KB, DASHBOARD_ASSETS))
        analyses.extend(analyze_page(*pattern) for pattern in PAGE_PATTERNS)
        analyses.sort(key=lambda a: a.optimization_score, reverse=True)
        with self._lock:
            self._analyses = analyses
        return analyses

    def _current_analyses(self) -> List[FrontendPerformanceAnalysis]:
        with self._lock:
            analyses = list(self._analyses)
        return analyses or self.analyze()

    def generate_bundle_optimizations(self) -> List[BundleOptimization]:
        opts = [o for a in self._current_analyses() if a.optimization_score > 40 for o in bundle_optimizations_for(a)]
        opts.append(BundleOptimization(
            id=_new_id(), target="main_bundle", optimization_type="compression",
            description="Enable gzip/brotli compression for all bundles",
            estimated_improvement=15, implementation_complexity="low",
        ))
        with self._lock:
            self._bundle = merge_generated(self._bundle, opts)
        return opts

    def generate_asset_optimizations(self) -> List[AssetOptimization]:
        opts = [o for a in self._current_analyses() if a.optimization_score > 30 for o in asset_optimizations_for(a)]
        opts.append(AssetOptimization(
            id=_new_id(), target="static_files", optimization_type="caching",
            description="Implement aggressive caching for static assets",
            estimated_improvement=20, implementation_complexity="low",
        ))
        with self._lock:
            self._asset = merge_generated(self._asset, opts)
        return opts

    def generate_rendering_optimizations(self) -> List[RenderingOptimization]:
        opts = [
            o for a in self._current_analyses() if a.optimization_score > 50 for o in rendering_optimizations_for(a)
        ]
        opts.append(RenderingOptimization(
            id=_new_id(), target="react_components", optimization_type="code_splitting",
            description="Implement route-based code splitting for better performance",
            estimated_improvement=25, implementation_complexity="medium",
        ))
        with self._lock:
            self._rendering = merge_generated(self._rendering, opts)
        return opts

    async def _execute(self, items: List[FrontendWorkItem], item_id: str, label: str) -> FrontendWorkItem:
        with self._lock:
            item = claim_pending(items, item_id, label)
        delay = simulated_delay(self._rng, item.implementation_complexity)
        await simulate_work(item, delay * self._time_scale, f"Frontend {label}")
        with self._lock:
            item.status = "completed"
            item.implemented_at = utc_now()
            item.performance_impact = round(item.estimated_improvement * self._rng.uniform(0.8, 1.2), 2)
        logger.info("Frontend %s %s implemented", label, item_id)
        return item

    async def execute_bundle(self, optimization_id: str) -> BundleOptimization:
        return await self._execute(self._bundle, optimization_id, "bundle optimization")

    async def execute_asset(self, optimization_id: str) -> AssetOptimization:
        return await self._execute(self._asset, optimization_id, "asset optimization")

    async def execute_rendering(self, optimization_id: str) -> RenderingOptimization:
        return await self._execute(self._rendering, optimization_id, "rendering optimization")

    def get_status(self) -> FrontendOptimizationStatus:
        with self._lock:
            analyses = list(self._analyses)
            parts = FrontendOptimizationBreakdown(
                bundle=breakdown(self._bundle),
                asset=breakdown(self._asset),
                rendering=breakdown(self._rendering),
            )
        top = sorted(
            (a for a in analyses if a.optimization_score > 50), key=lambda a: a.optimization_score, reverse=True
        )
        return FrontendOptimizationStatus(
            summary=summarize([parts.bundle, parts.asset, parts.rendering]),
            breakdown=parts,
            recent_analyses=analyses[-5:],
            top_recommendations=top[:5],
        )

    def get_analyses(self) -> List[FrontendPerformanceAnalysis]:
        with self._lock:
            return list(self._analyses)

    def get_bundle_optimizations(self) -> List[BundleOptimization]:
        with self._lock:
            return list(self._bundle)

    def get_asset_optimizations(self) -> List[AssetOptimization]:
        with self._lock:
            return list(self._asset)

    def get_rendering_optimizations(self) -> List[RenderingOptimization]:
        with self._lock:
            return list(self._rendering)
