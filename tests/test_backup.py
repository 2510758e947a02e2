from __future__ import annotations

import os
import tarfile
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.dashboard.services.backup_service import BACKUP_EXECUTION_FAILED, read_export, retry_delay_sec


def test_retry_backoff_doubles_and_caps():
    assert [retry_delay_sec(n) for n in range(4)] == [60, 120, 240, 480]
    assert retry_delay_sec(10) == 3600


@pytest.mark.anyio
async def test_invalid_cron_is_rejected(client: httpx.AsyncClient):
    res = await client.post(
        "/api/backup/configs",
        json={"businessEntityId": "biz-1", "backupType": "database_full", "schedule": "every night"},
    )
    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Invalid cron expression: every night"


@pytest.mark.anyio
async def test_config_crud(client: httpx.AsyncClient, create_backup_config):
    config = await create_backup_config()
    assert config["storageLocation"] == "local"
    assert config["isActive"] is True

    res = await client.put(f"/api/backup/configs/{config['id']}", json={"retentionDays": 7, "isActive": False})
    assert res.status_code == 200
    assert res.json()["data"]["retentionDays"] == 7
    assert res.json()["data"]["schedule"] == "0 2 * * *"

    res = await client.put(f"/api/backup/configs/{config['id']}", json={"schedule": "61 * * * *"})
    assert res.status_code == 400

    res = await client.get("/api/backup/configs", params={"isActive": "false"})
    assert [c["id"] for c in res.json()["data"]] == [config["id"]]

    res = await client.delete(f"/api/backup/configs/{config['id']}")
    assert res.status_code == 200
    res = await client.get(f"/api/backup/configs/{config['id']}")
    assert res.status_code == 404
    res = await client.get("/api/backup/configs/not-an-object-id")
    assert res.status_code == 404


async def _run_backup(client: httpx.AsyncClient, config: dict) -> dict:
    res = await client.post(
        "/api/backup/jobs", json={"businessEntityId": config["businessEntityId"], "backupConfigId": config["id"]}
    )
    assert res.status_code == 201, res.text
    job = res.json()["data"]
    assert job["status"] == "pending"
    res = await client.post(f"/api/backup/jobs/{job['id']}/execute")
    assert res.status_code == 200, res.text
    return res.json()["data"]


@pytest.mark.anyio
async def test_database_backup_executes_and_verifies(client: httpx.AsyncClient, create_backup_config, fresh_state):
    fresh_state.mongo.collections().metrics.insert_one(
        {"businessEntityId": "biz-1", "metricType": "revenue", "value": 10, "createdAt": datetime(2020, 1, 1)}
    )
    config = await create_backup_config()
    job = await _run_backup(client, config)

    assert job["status"] == "completed"
    assert job["fileSize"] > 0
    assert len(job["checksum"]) == 64
    assert job["filePath"].endswith(".json.gz")
    export = read_export(job["filePath"])
    assert len(export["collections"]["metrics"]) == 1
    assert len(export["collections"]["backup_configs"]) == 1

    res = await client.post(f"/api/backup/jobs/{job['id']}/verify")
    verification = res.json()["data"]
    assert verification["status"] == "passed"
    assert verification["checksumVerified"] and verification["integrityVerified"] and verification["restoreTested"]

    res = await client.post(f"/api/backup/jobs/{job['id']}/execute")
    assert res.status_code == 409

    res = await client.get("/api/backup/metrics/backup", params={"businessEntityId": "biz-1"})
    metrics = res.json()["data"]
    assert metrics["totalBackups"] == 1
    assert metrics["successRate"] == 100.0
    assert metrics["nextScheduledBackup"] is not None


@pytest.mark.anyio
async def test_file_system_backup_is_a_tarball(client: httpx.AsyncClient, create_backup_config):
    config = await create_backup_config(backupType="file_system", compressionEnabled=False)
    job = await _run_backup(client, config)
    assert job["status"] == "completed"
    assert job["filePath"].endswith(".tar")
    with tarfile.open(job["filePath"]) as tar:
        assert "settings.json" in tar.getnames()


@pytest.mark.anyio
async def test_unsupported_type_fails_with_retry_scheduled(client: httpx.AsyncClient, create_backup_config):
    config = await create_backup_config(backupType="logs")
    job = await _run_backup(client, config)
    assert job["status"] == "failed"
    assert job["errorCode"] == BACKUP_EXECUTION_FAILED
    assert job["errorMessage"] == "Unsupported backup type: logs"
    assert job["nextRetryAt"] is not None

    res = await client.get("/api/backup/jobs", params={"status": "failed"})
    assert [j["id"] for j in res.json()["data"]] == [job["id"]]


@pytest.mark.anyio
async def test_full_selective_and_point_in_time_recovery(
    client: httpx.AsyncClient, create_backup_config, fresh_state
):
    metrics = fresh_state.mongo.collections().metrics
    metrics.insert_one({"businessEntityId": "biz-1", "value": 1, "createdAt": datetime(2020, 1, 1)})
    config = await create_backup_config()
    job = await _run_backup(client, config)
    metrics.delete_many({})

    async def recover(recovery_type: str, metadata: dict) -> dict:
        res = await client.post(
            "/api/backup/recovery",
            json={
                "businessEntityId": "biz-1",
                "backupJobId": job["id"],
                "recoveryType": recovery_type,
                "metadata": metadata,
            },
        )
        assert res.status_code == 201, res.text
        res = await client.post(f"/api/backup/recovery/{res.json()['data']['id']}/execute")
        assert res.status_code == 200
        return res.json()["data"]

    full = await recover("full_restore", {})
    assert full["status"] == "completed"
    assert full["recoveredRecords"] == 2
    assert metrics.count_documents({}) == 1

    selective = await recover("selective_restore", {"collections": ["metrics"]})
    assert selective["recoveredRecords"] == 1

    point = await recover("point_in_time", {"pointInTime": "2021-01-01T00:00:00Z"})
    assert point["recoveredRecords"] == 1

    missing = await recover("selective_restore", {})
    assert missing["status"] == "failed"
    assert missing["errorMessage"] == "selective_restore requires metadata.collections"

    res = await client.get("/api/backup/metrics/recovery")
    stats = res.json()["data"]
    assert stats["totalRecoveries"] == 4
    assert stats["successfulRecoveries"] == 3
    assert stats["failedRecoveries"] == 1


@pytest.mark.anyio
async def test_cleanup_removes_expired_backups(client: httpx.AsyncClient, create_backup_config, fresh_state):
    config = await create_backup_config(retentionDays=1)
    job = await _run_backup(client, config)
    jobs = fresh_state.mongo.collections().backup_jobs
    jobs.update_one({}, {"$set": {"endTime": datetime.now(timezone.utc) - timedelta(days=3)}})

    res = await client.post("/api/backup/maintenance/cleanup")
    assert res.json()["data"] == {"deleted": 1}
    res = await client.get(f"/api/backup/jobs/{job['id']}")
    assert res.status_code == 404


@pytest.mark.anyio
async def test_cleanup_covers_deactivated_and_deleted_configs(
    client: httpx.AsyncClient, create_backup_config, fresh_state
):
    paused = await create_backup_config(retentionDays=1)
    paused_job = await _run_backup(client, paused)
    res = await client.put(f"/api/backup/configs/{paused['id']}", json={"isActive": False})
    assert res.json()["data"]["isActive"] is False

    removed = await create_backup_config(retentionDays=1)
    orphan = await _run_backup(client, removed)
    assert (await client.delete(f"/api/backup/configs/{removed['id']}")).status_code == 200

    jobs = fresh_state.mongo.collections().backup_jobs
    now = datetime.now(timezone.utc)
    jobs.update_many({}, {"$set": {"endTime": now - timedelta(days=3)}})
    # The deactivated config keeps its own retention; the orphan falls back to 30 days.
    assert fresh_state.backups.cleanup() == 1
    assert (await client.get(f"/api/backup/jobs/{paused_job['id']}")).status_code == 404
    assert not os.path.exists(paused_job["filePath"])

    jobs.update_many({}, {"$set": {"endTime": now - timedelta(days=31)}})
    assert fresh_state.backups.cleanup() == 1
    assert (await client.get(f"/api/backup/jobs/{orphan['id']}")).status_code == 404


def test_scheduler_pass_runs_due_configs_and_retries(fresh_state):
    from src.dashboard.schemas.backup import BackupConfigCreate

    backups = fresh_state.backups
    every_minute = backups.create_config(
        BackupConfigCreate(business_entity_id="biz-1", backup_type="database_full", schedule="* * * * *")
    )
    broken = backups.create_config(
        BackupConfigCreate(business_entity_id="biz-2", backup_type="configuration", schedule="0 0 1 1 *")
    )
    created = every_minute.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)

    # Stopped: nothing runs.
    assert backups.run_due(now=created + timedelta(minutes=2)) == []

    backups.start()
    ran = backups.run_due(now=created + timedelta(minutes=2))
    assert [j.backup_config_id for j in ran] == [every_minute.id]
    assert ran[0].status == "completed"
    assert ran[0].metadata["scheduled"] is True

    from src.dashboard.schemas.backup import BackupJobCreate

    failing = backups.create_job(BackupJobCreate(business_entity_id="biz-2", backup_config_id=broken.id))
    failed = backups.execute_job(failing.id)
    assert failed.status == "failed"

    later = datetime.now(timezone.utc) + timedelta(minutes=5)
    retried = [j for j in backups.run_due(now=later) if j.id == failing.id]
    assert len(retried) == 1
    assert retried[0].retry_count == 1
    assert retried[0].status == "failed"

    backups.stop()
    assert backups.status().scheduled_configs == 0


@pytest.mark.anyio
async def test_service_start_stop_and_public_health(
    async_client: httpx.AsyncClient, client: httpx.AsyncClient, create_backup_config
):
    await create_backup_config()
    res = await client.post("/api/backup/service/start")
    assert res.json()["data"] == {"isRunning": True, "scheduledConfigs": 1, "activeJobs": 0}

    res = await client.post("/api/backup/service/stop")
    assert res.json()["data"]["isRunning"] is False
    assert res.json()["data"]["scheduledConfigs"] == 0

    # Health is reachable without a token.
    async_client.headers.pop("Authorization", None)
    res = await async_client.get("/api/backup/health")
    assert res.status_code == 200
    assert res.json()["status"] == "healthy"
    assert res.json()["message"] == "Backup scheduler is stopped"
