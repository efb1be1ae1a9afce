#!/usr/bin/env python3
"""
FastAPI server exposing the metrics endpoint
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from hpa_exporter import __version__
from hpa_exporter.config.settings import ServerSettings
from hpa_exporter.core.poller import MetricsPoller
from hpa_exporter.core.registry import MetricRegistry

logger = logging.getLogger(__name__)

ROOT_DOC = """<html>
<head><title>HPA Exporter</title></head>
<body>
<h1>HPA Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""


class APIServer:
    """FastAPI server for the scrape endpoint"""

    def __init__(self, registry: MetricRegistry, settings: ServerSettings,
                 poller: Optional[MetricsPoller] = None):
        """
        Initialize API server

        Args:
            registry: Registry whose families are exposed
            settings: Listen address and metrics path
            poller: Metrics poller reported by the health endpoint
        """
        self.registry = registry
        self.settings = settings
        self.poller = poller
        self.app = FastAPI(
            title="HPA Exporter",
            description="Prometheus exporter for HorizontalPodAutoscaler status",
            version=__version__
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes"""
        root_doc = ROOT_DOC.format(metrics_path=self.settings.metrics_path)

        @self.app.get("/", response_class=HTMLResponse)
        async def root():
            return HTMLResponse(content=root_doc)

        @self.app.get(self.settings.metrics_path)
        async def metrics():
            return Response(content=self.registry.exposition(), media_type=CONTENT_TYPE_LATEST)

        @self.app.get("/health")
        async def health_check():
            """Health of the metrics poll loop"""
            details = self.poller.status() if self.poller else {}
            healthy = not details.get("last_error")
            return JSONResponse(
                content={
                    "status": "healthy" if healthy else "unhealthy",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "details": details
                },
                status_code=200 if healthy else 503
            )

    def run(self):
        """Serve until interrupted; a bind failure exits the process"""
        host, port = self.settings.host, self.settings.port
        logger.info(f"Starting HTTP server on {host}:{port}")
        uvicorn.run(self.app, host=host, port=port, log_level="info")
