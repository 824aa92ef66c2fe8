"""
Numbers for the admin dashboard.

Besides the user and short URL counts, the dashboard carries a server
block: host resources (memory, disk, load) and health checks for the
database, the Shlink API and the background jobs. Every check reports
its own error instead of failing the dashboard.
"""

import logging
import os
import platform
import shutil
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from shlink_ui.clock import utcnow
from shlink_ui.config import settings
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import ROLE_ADMIN, ROLE_NORMAL_USER, User
from shlink_ui.services.job_service import JobService
from shlink_ui.services.shlink_client import ShlinkClient, ShlinkError
from shlink_ui.services.user_management_service import UserManagementService

logger = logging.getLogger(__name__)

MEMINFO_PATH = "/proc/meminfo"
FAILED_JOBS_WARNING = 10


def usage_status(percent: float, warning_at: float = 70, critical_at: float = 85) -> str:
    if percent > critical_at:
        return "critical"
    if percent > warning_at:
        return "warning"
    return "good"


def format_bytes(size: float) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    return f"{round(size, 1)} {units[index]}"


class SystemStatsService:
    def __init__(self, db: Session, jobs: JobService, shlink: Optional[ShlinkClient] = None):
        self.db = db
        self.jobs = jobs
        self.shlink = shlink

    async def call(self) -> Dict[str, Any]:
        job_stats = await self.jobs.stats()
        return {
            "users": self.user_statistics(),
            "short_urls": self.short_url_statistics(),
            "system": {
                "version": {
                    "app": settings.app_version,
                    "python": platform.python_version(),
                    "environment": settings.environment,
                },
                "database": {"adapter": self.db.get_bind().dialect.name},
                "background_jobs": job_stats,
            },
            "server": {
                "resources": self.system_resources(),
                "health": self.health_checks(job_stats),
            },
        }

    def user_statistics(self) -> Dict[str, int]:
        now = utcnow()
        users = self.db.query(User)
        return {
            "total": users.count(),
            "admin": users.filter(User.role == ROLE_ADMIN).count(),
            "normal": users.filter(User.role == ROLE_NORMAL_USER).count(),
            "active_today": users.filter(User.current_sign_in_at >= now - timedelta(hours=24)).count(),
            "active_this_week": users.filter(User.current_sign_in_at >= now - timedelta(days=7)).count(),
        }

    def short_url_statistics(self) -> Dict[str, Any]:
        now = utcnow()
        urls = self.db.query(ShortUrl)
        return {
            "total": urls.count(),
            "created_today": urls.filter(ShortUrl.date_created >= now - timedelta(hours=24)).count(),
            "created_this_week": urls.filter(ShortUrl.date_created >= now - timedelta(days=7)).count(),
            "created_this_month": urls.filter(ShortUrl.date_created >= now - timedelta(days=30)).count(),
            "total_visits": int(self.db.query(func.coalesce(func.sum(ShortUrl.visit_count), 0)).scalar()),
            "most_popular": [
                UserManagementService.url_summary(url)
                for url in urls.order_by(ShortUrl.visit_count.desc()).limit(5)
            ],
        }

    # Server resources

    def system_resources(self) -> Dict[str, Any]:
        return {
            "memory": self.memory_usage(),
            "disk": self.disk_usage(),
            "cpu": self.cpu_usage(),
        }

    @staticmethod
    def memory_usage(path: str = MEMINFO_PATH) -> Dict[str, Any]:
        try:
            with open(path) as f:
                fields = dict(line.split(":", 1) for line in f if ":" in line)
            total = int(fields["MemTotal"].split()[0]) * 1024
            available = int(fields["MemAvailable"].split()[0]) * 1024
        except (OSError, KeyError, ValueError, IndexError) as e:
            return {"error": f"Memory information unavailable: {e}"}
        used = total - available
        percent = round(used / total * 100, 1) if total else 0.0
        return {
            "total": format_bytes(total),
            "used": format_bytes(used),
            "available": format_bytes(available),
            "usage_percent": percent,
            "status": usage_status(percent),
        }

    @staticmethod
    def disk_usage(path: str = "/") -> Dict[str, Any]:
        try:
            usage = shutil.disk_usage(path)
        except OSError as e:
            return {"error": f"Disk information unavailable: {e}"}
        percent = round(usage.used / usage.total * 100, 1) if usage.total else 0.0
        return {
            "total": format_bytes(usage.total),
            "used": format_bytes(usage.used),
            "available": format_bytes(usage.free),
            "usage_percent": percent,
            "status": usage_status(percent),
        }

    @staticmethod
    def cpu_usage() -> Dict[str, Any]:
        try:
            load_1, load_5, load_15 = os.getloadavg()
        except (AttributeError, OSError) as e:
            return {"error": f"Load average unavailable: {e}"}
        cores = os.cpu_count() or 1
        percent = round(load_1 / cores * 100, 1)
        return {
            "load_1min": load_1,
            "load_5min": load_5,
            "load_15min": load_15,
            "cores": cores,
            "usage_percent": percent,
            "status": usage_status(percent, critical_at=90),
        }

    # Health checks

    def health_checks(self, job_stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "database": self.database_health(),
            "external_apis": {"shlink_api": self.shlink_api_health()},
            "background_jobs": self.background_job_health(job_stats),
        }

    def database_health(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            self.db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Database health check failed: %s", e)
            self.db.rollback()
            return {"connected": False, "response_time": None, "status": "error"}
        elapsed = round((time.perf_counter() - started) * 1000, 2)
        return {"connected": True, "response_time": elapsed, "status": "healthy"}

    def shlink_api_health(self) -> Dict[str, Any]:
        checked_at = utcnow().isoformat()
        if self.shlink is None:
            return {"status": "unknown", "last_check": checked_at}
        started = time.perf_counter()
        try:
            result = self.shlink.health()
        except ShlinkError as e:
            logger.warning("Shlink health check failed: %s", e.message)
            return {"status": "error", "error": e.message, "last_check": checked_at}
        elapsed = round((time.perf_counter() - started) * 1000, 2)
        healthy = (result or {}).get("status") == "pass"
        return {
            "status": "healthy" if healthy else "warning",
            "version": (result or {}).get("version"),
            "response_time": elapsed,
            "last_check": checked_at,
        }

    def background_job_health(self, job_stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if job_stats is None or job_stats.get("database_error"):
            return {"status": "error", "error": "Background job information unavailable"}
        failed = job_stats.get("failed_jobs", 0)
        return {
            "failed_jobs": failed,
            "status": "warning" if failed > FAILED_JOBS_WARNING else "healthy",
        }
