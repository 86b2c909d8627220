"""
Config Builder

Drives one build cycle through explicit stages:

    UNINITIALIZED -> SCHEMA_COMPILING -> INDEXING -> CLIENT_GENERATING -> DONE

Any failure moves the builder to FAILED and re-raises. Each stage receives
and returns an immutable BuildContext; nothing is shared between stages
except through it.

Audit builds index through a read-only bridge, never reset the generated
folder and compute the artifacts without writing them.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config import settings
from .core.errors import BuildFailed, DatalayerError, DatalayerIOError, WriteDenied
from .database import Database, IndexingReport
from .schema.compiler import compile_schema_file
from .schema.models import CompiledSchema
from .schema.query_schema import build_query_schema, render_sdl

logger = logging.getLogger("datalayer.builder")


SCHEMA_ARTIFACT = "_schema.json"
QUERY_SCHEMA_ARTIFACT = "_query_schema.json"
SDL_ARTIFACT = "schema.gql"


class BuildStage(str, Enum):
    UNINITIALIZED = "uninitialized"
    SCHEMA_COMPILING = "schema_compiling"
    INDEXING = "indexing"
    CLIENT_GENERATING = "client_generating"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BuildOptions:
    audit: bool = False
    # Content validation errors fail the build
    strict: bool = False
    force: bool = False
    schema_dir: Optional[str] = None


@dataclass(frozen=True)
class BuildContext:
    """State handed from one build stage to the next."""

    stage: BuildStage
    options: BuildOptions
    schema: Optional[CompiledSchema] = None
    report: Optional[IndexingReport] = None
    query_schema: Optional[Dict[str, Any]] = None
    artifacts: Mapping[str, str] = field(default_factory=dict)
    error: Optional[BaseException] = None

    def advance(self, stage: BuildStage, **changes: Any) -> "BuildContext":
        return replace(self, stage=stage, **changes)


def _dump_json(document: Any) -> str:
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def reset_generated_folder(generated: Path, keep: str) -> None:
    """
    Remove every generated artifact, keeping the persistent store directory.

    Creates the folder if it does not exist.
    """
    try:
        if generated.is_dir():
            for child in generated.iterdir():
                if child.name == keep:
                    continue
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        generated.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DatalayerIOError(
            f"Unable to reset generated folder {generated}: {type(exc).__name__}",
            path=str(generated),
        ) from exc


class ConfigBuilder:
    """
    Build orchestrator for one Database.

    Parameters
    ----------
    database : Database
        Database whose bridge and store the build uses.

    root_path : str | Path
        Content root holding the schema definition and the generated folder.
    """

    def __init__(self, database: Database, root_path: str | Path) -> None:
        self.database = database
        self.root_path = Path(root_path).resolve()
        self._stage = BuildStage.UNINITIALIZED
        self.context: Optional[BuildContext] = None

    @property
    def stage(self) -> BuildStage:
        return self._stage

    @property
    def generated_path(self) -> Path:
        return self.root_path / settings.generated_dir

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, options: Optional[BuildOptions] = None) -> BuildContext:
        """
        Run every stage and return the final context.

        Raises
        ------
        SchemaInvalid
            The schema does not compile; no artifact is produced.

        WriteDenied
            An audit build attempted a mutation.

        BuildFailed
            Strict mode and content validation errors were reported.
        """
        ctx = BuildContext(BuildStage.UNINITIALIZED, options or BuildOptions())
        self._enter(ctx)

        try:
            ctx = self._enter(ctx.advance(BuildStage.SCHEMA_COMPILING))
            ctx = self._compile(ctx)

            ctx = self._enter(ctx.advance(BuildStage.INDEXING))
            ctx = self._index(ctx)

            ctx = self._enter(ctx.advance(BuildStage.CLIENT_GENERATING))
            ctx = self._generate(ctx)
        except DatalayerError as exc:
            self._enter(ctx.advance(BuildStage.FAILED, error=exc))
            logger.error("Build failed during %s: %s", ctx.stage.value, exc)
            raise

        return self._enter(ctx.advance(BuildStage.DONE))

    def _enter(self, ctx: BuildContext) -> BuildContext:
        self._stage = ctx.stage
        self.context = ctx
        logger.debug("Build stage: %s", ctx.stage.value)
        return ctx

    def _compile(self, ctx: BuildContext) -> BuildContext:
        schema = compile_schema_file(self.root_path, ctx.options.schema_dir)
        return replace(ctx, schema=schema)

    def _index(self, ctx: BuildContext) -> BuildContext:
        db = self.database
        store = db.store

        db.clear_cache()
        if store.is_open:
            store.close()
        if not ctx.options.audit:
            reset_generated_folder(self.generated_path, settings.store_dirname)
        store.open()

        if ctx.schema.config.output_path:
            db.bridge.add_output_path(ctx.schema.config.output_path)

        report = db.index_content(ctx.schema, force=ctx.options.force)

        violations = getattr(db.bridge, "violations", None)
        if violations:
            raise WriteDenied(
                violations[0],
                f"audit detected {len(violations)} attempted write(s), first at",
            )

        if report.error_count:
            logger.warning(
                "%d document(s) failed to index (%d not listed)",
                report.error_count,
                report.truncated,
            )
            for error in report.errors:
                logger.warning("  %s", error)

        if ctx.options.strict and report.error_count:
            raise BuildFailed(
                f"{report.error_count} document(s) failed validation",
                list(report.errors),
            )
        return replace(ctx, report=report)

    def _generate(self, ctx: BuildContext) -> BuildContext:
        query_schema = build_query_schema(ctx.schema, self.database.store)
        artifacts = {
            SCHEMA_ARTIFACT: _dump_json(ctx.schema.model_dump(mode="json")),
            QUERY_SCHEMA_ARTIFACT: _dump_json(query_schema),
            SDL_ARTIFACT: render_sdl(query_schema),
        }

        if ctx.options.audit:
            logger.info("Audit build: %d artifact(s) computed, none written", len(artifacts))
        else:
            for name, content in artifacts.items():
                self.database.bridge.put_output(name, content)
            logger.info(
                "Wrote %d artifact(s) to %s",
                len(artifacts),
                self.database.bridge.output_path,
            )

        return replace(ctx, query_schema=query_schema, artifacts=artifacts)
