"""Save-as: copy the project database to a new file, chunk by chunk."""

from __future__ import annotations

import logging
from pathlib import Path

from windresource.core.errors import DataIOError, ValidationError
from windresource.model.requests import SaveAsParams, StageKind
from windresource.model.results import StageOutput
from windresource.providers.project_store import ProjectStore
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


class SaveAsRunner(StageRunner):
    kind = StageKind.SAVE_AS

    def execute(self, params: SaveAsParams, ctx: StageContext) -> StageOutput:
        store = ctx.require_store()
        target = Path(params.target_path)
        if target.resolve() == store.db_path.resolve():
            raise ValidationError(f"Save-as target {target} is the open project")

        ctx.add_rollback(f"Delete partial copy {target}", lambda: target.unlink(missing_ok=True))
        if target.exists():
            try:
                target.unlink()
            except OSError as e:
                raise DataIOError(f"Cannot replace {target}: {e}") from e
            logger.info(f"Removed existing {target}")

        def on_chunk(copied: int, total: int) -> None:
            ctx.checkpoint()
            ctx.report(percent=100.0 * copied / max(total, 1), message=f"Saving project: {copied}/{total} rows")

        ctx.report(percent=0, message="Saving project...")
        store.copy_to(target_path=target, chunk_rows=params.chunk_rows, on_chunk=on_chunk)
        with ProjectStore(target) as copy:
            copy.save_snapshot(ctx.snapshot)
        ctx.snapshot.project_path = target
        return StageOutput(mutations=(f"project saved as {target}",), payload=target)
