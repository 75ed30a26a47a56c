"""Runs a resolved chain hop by hop with private staging files."""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from pathlib import Path

from docbridge.converter.errors import ConversionCancelled, ConversionFailure, PipelineStepFailure
from docbridge.converter.models import ConversionOptions, PipelineStep, StepResult
from docbridge.pipeline.fallback import WeightedFallbackExecutor

logger = logging.getLogger(__name__)


class PipelineExecutor:
    """Executes multi-step conversions through the fallback executor.

    Intermediate outputs live in a staging directory created per run and
    removed in ``finally``, so success, failure, cancellation and interrupts
    all leave nothing behind. Only the final hop writes to the caller's path.
    """

    def __init__(self, fallback: WeightedFallbackExecutor, temp_dir: str | None = None) -> None:
        self._fallback = fallback
        self._temp_dir = temp_dir

    def run(
        self,
        steps: list[PipelineStep],
        input_path: Path,
        output_path: Path,
        options: ConversionOptions,
    ) -> list[StepResult]:
        if not steps:
            raise ValueError("pipeline has no steps")

        requested_from = steps[0].from_format
        requested_to = steps[-1].to_format
        if self._temp_dir:
            Path(self._temp_dir).mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix="docbridge-", dir=self._temp_dir))
        artifacts: list[Path] = []
        results: list[StepResult] = []
        succeeded = False
        final_started = False

        try:
            current_input = input_path
            for index, step in enumerate(steps):
                if options.cancelled:
                    raise ConversionCancelled(requested_from, requested_to)

                if index == len(steps) - 1:
                    current_output = output_path
                    final_started = True
                else:
                    current_output = staging / f"step-{index + 1}-{uuid.uuid4().hex[:8]}.{step.to_format}"
                    artifacts.append(current_output)

                logger.debug(
                    "Executing pipeline step %d/%d: %s -> %s (%s -> %s)",
                    index + 1, len(steps), step.from_format, step.to_format,
                    current_input.name, current_output.name,
                )
                try:
                    result = self._fallback.execute(
                        step.from_format,
                        step.to_format,
                        current_input,
                        current_output,
                        options,
                    )
                except ConversionFailure as e:
                    raise PipelineStepFailure(
                        requested_from,
                        requested_to,
                        hop_index=index,
                        hop_from=step.from_format,
                        hop_to=step.to_format,
                        last_error=e.last_error,
                        attempts=e.attempts,
                    ) from e

                results.append(result)
                current_input = current_output

            succeeded = True
        finally:
            for artifact in artifacts:
                artifact.unlink(missing_ok=True)
            shutil.rmtree(staging, ignore_errors=True)
            if final_started and not succeeded:
                output_path.unlink(missing_ok=True)

        logger.info(
            "Pipeline conversion completed: %s -> %s in %d steps",
            input_path, output_path, len(steps),
        )
        return results
