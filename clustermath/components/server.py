"""
Server component for clustermath.

This module provides a FastAPI server exposing hierarchical and two-step
cluster analyses. Each request computes only the outputs it asks for.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

import fastapi
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clustermath import __version__
from clustermath.analysis import HierarchicalAnalysis, TwoStepAnalysis
from clustermath.components.config import Config, ConfigManager
from clustermath.errors import ClusteringError, ConfigurationError
from clustermath.math.case_matrix import CaseMatrix
from clustermath.math.options import HierarchicalOptions, TwoStepOptions
from clustermath.utils.general import to_jsonable

# Set up logging
logger = logging.getLogger(__name__)


# Define API models
class CaseData(BaseModel):
    """Case data model: continuous and/or categorical rows, one per case."""

    continuous: Optional[List[List[Optional[float]]]] = None
    categorical: Optional[List[List[Any]]] = None
    continuous_names: Optional[List[str]] = None
    categorical_names: Optional[List[str]] = None
    labels: Optional[List[str]] = None


class HierarchicalRequest(BaseModel):
    """Hierarchical analysis request model."""

    data: CaseData
    options: Optional[Dict[str, Any]] = None
    outputs: Optional[List[str]] = None


class TwoStepRequest(BaseModel):
    """Two-step analysis request model."""

    data: CaseData
    options: Optional[Dict[str, Any]] = None


def case_matrix_from(data: CaseData) -> CaseMatrix:
    """
    Build a CaseMatrix from request data.

    Args:
        data: Request case data

    Returns:
        CaseMatrix
    """
    continuous = None
    if data.continuous:
        continuous = [[float('nan') if v is None else v for v in row] for row in data.continuous]
    return CaseMatrix.from_arrays(
        continuous=continuous,
        categorical=data.categorical or None,
        continuous_names=data.continuous_names,
        categorical_names=data.categorical_names,
        labels=data.labels
    )


class Server:
    """
    FastAPI server for clustermath.
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize a server.

        Args:
            config: Configuration for the server
        """
        self.config = config or ConfigManager.get_config()

        # Create FastAPI app
        self.app = FastAPI(
            title="Clustermath API",
            description="API for hierarchical and two-step cluster analysis",
            version=__version__
        )

        # Set up CORS
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()
        self._setup_validation()
        self._setup_error_handling()

        # Server status
        self._running = False
        self._server_thread = None

    def _setup_routes(self) -> None:
        """
        Set up API routes.
        """
        @self.app.get("/health")
        async def health_check():
            return {"status": "ok"}

        @self.app.get("/api/v1/config")
        async def get_config():
            return self.config.to_dict()

        @self.app.post("/api/v1/hierarchical")
        async def hierarchical(request: HierarchicalRequest):
            options = HierarchicalOptions.from_dict(self.config.section('hierarchical', request.options))
            cases = case_matrix_from(request.data)
            result = HierarchicalAnalysis(options).run(cases, request.outputs)
            return to_jsonable(result.to_dict())

        @self.app.post("/api/v1/twostep")
        async def twostep(request: TwoStepRequest):
            options = TwoStepOptions.from_dict(self.config.section('twostep', request.options))
            cases = case_matrix_from(request.data)
            result = TwoStepAnalysis(options).run(cases)
            return to_jsonable(result.to_dict())

    def _setup_validation(self) -> None:
        """
        Set up request validation.
        """
        @self.app.exception_handler(fastapi.exceptions.RequestValidationError)
        async def validation_exception_handler(request, exc):
            return JSONResponse(
                status_code=422,
                content={"detail": str(exc)}
            )

    def _setup_error_handling(self) -> None:
        """
        Set up error handling.
        """
        @self.app.exception_handler(ConfigurationError)
        async def configuration_exception_handler(request, exc):
            logger.warning(f"Rejected request: {exc}")
            return JSONResponse(
                status_code=400,
                content={"detail": str(exc)}
            )

        @self.app.exception_handler(ClusteringError)
        async def clustering_exception_handler(request, exc):
            logger.error(f"Clustering failed: {exc}")
            return JSONResponse(
                status_code=422,
                content={"detail": str(exc)}
            )

        @self.app.exception_handler(Exception)
        async def generic_exception_handler(request, exc):
            logger.exception("Unhandled exception")
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"}
            )

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Start the server in a background thread.
        """
        if self._running:
            return

        import uvicorn

        port = self.config.get('server.port', 8080)
        host = self.config.get('server.host', '0.0.0.0')
        level = self.config.get('logging.level', 'info')
        if level == 'warn':
            level = 'warning'

        def run_server():
            uvicorn.run(self.app, host=host, port=port, log_level=level)

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()
        self._running = True

        logger.info(f"Server started at http://{host}:{port}")

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the server thread exits."""
        if self._server_thread is not None:
            self._server_thread.join(timeout)

    def stop(self) -> None:
        """
        Stop the server.
        """
        if not self._running:
            return

        # uvicorn has no clean stop from outside its thread
        self._running = False

        logger.info("Server stopping (full shutdown requires process restart)")


class ServerManager:
    """
    Singleton manager for the server.
    """

    _instance = None
    _lock = threading.RLock()

    @classmethod
    def get_server(cls, config: Optional[Config] = None) -> Server:
        """
        Get the server instance.

        Args:
            config: Configuration

        Returns:
            Server instance
        """
        with cls._lock:
            if cls._instance is None:
                cls._instance = Server(config)

            return cls._instance

    @classmethod
    def shutdown(cls) -> None:
        """
        Shut down the server.
        """
        with cls._lock:
            if cls._instance is not None:
                cls._instance.stop()
                cls._instance = None
