# TileCacheExporter/core/resolver.py
# -*- coding: utf-8 -*-

"""Asynchronous resolution of export parameters."""

from __future__ import annotations

import concurrent.futures
import logging
from concurrent.futures import Executor, Future
from typing import Optional

from .errors import ExportError, RegionUndefinedError, ResolutionError
from .models import ExportParameters, GeoRegion
from .validation import validate_scale

logger = logging.getLogger(__name__)


class ExportParameterResolver:
    """Compute ``ExportParameters`` off the calling thread.

    Args:
        capability: Object providing
            ``create_default_parameters(region, min_scale, max_scale)``.
        executor: Executor running the computation.
    """

    def __init__(self, capability, executor: Executor) -> None:
        self.capability = capability
        self.executor = executor

    def resolve_async(
        self,
        region: Optional[GeoRegion],
        current_scale: float,
        max_allowed_scale: float,
    ) -> "Future[ExportParameters]":
        """Start resolving parameters for ``region``.

        Raises:
            RegionUndefinedError: If ``region`` is ``None``.
            ValidationError: If a scale is not a positive number.

        Returns:
            A future completing exactly once with the parameters or a
            ``ResolutionError``.
        """
        if region is None:
            raise RegionUndefinedError("No download region to resolve parameters for.")
        validate_scale(current_scale)
        validate_scale(max_allowed_scale)

        result: "Future[ExportParameters]" = Future()
        result.set_running_or_notify_cancel()

        try:
            inner = self.executor.submit(
                self.capability.create_default_parameters,
                region,
                float(current_scale),
                float(max_allowed_scale),
            )
        except RuntimeError as ex:
            # Executor already shut down.
            error = ResolutionError("ERR_RESOLUTION_INTERRUPTED", str(ex))
            logger.error("Parameter resolution not started: %s", error)
            result.set_exception(error)
            return result

        inner.add_done_callback(lambda f: self._complete(f, result))
        return result

    @staticmethod
    def _complete(inner: "Future[ExportParameters]", result: "Future[ExportParameters]") -> None:
        try:
            params = inner.result()
        except concurrent.futures.CancelledError:
            error = ResolutionError("ERR_RESOLUTION_INTERRUPTED", "Parameter computation was cancelled.")
        except ExportError as ex:
            error = ResolutionError("ERR_RESOLUTION_FAILED", ex.details or ex.code)
        except Exception as ex:
            error = ResolutionError("ERR_RESOLUTION_FAILED", str(ex) or type(ex).__name__)
        else:
            logger.debug(
                "Resolved parameters: levels %s, %d tiles",
                params.levels,
                params.tile_count,
            )
            result.set_result(params)
            return

        logger.error("Parameter resolution failed: %s", error)
        result.set_exception(error)
