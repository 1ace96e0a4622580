"""Run orchestration: extract, describe, infer, group, write.

Fatal errors (database unreachable, catalog unreadable, dirty working tree)
propagate out of ``generate``. Per-query and per-file errors are collected in
the GenerateReport and logged through ``config.logger``; everything that
succeeded is still written.
"""
from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping

import asyncpg

from pg_typegen.config import TypegenConfig, resolve_config
from pg_typegen.errors import (
    DatabaseConnectionError,
    DirtyWorkingTreeError,
    FatalError,
    FileError,
    QueryError,
)
from pg_typegen.extract import ExtractedFile, GitError, discover_files, extract_file, working_tree_status
from pg_typegen.inference import HostTypeResolver, InferenceEngine
from pg_typegen.introspect import (
    AsyncpgCatalogSource,
    AsyncpgPreparer,
    CatalogIntrospector,
    CatalogSource,
    StatementDescriber,
    StatementPreparer,
    TypeSampleResolver,
)
from pg_typegen.models import FileEdit, GenerateReport, InferredQuery, ReportedError, StatementDescription
from pg_typegen.shapes import group_shapes
from pg_typegen.write import build_companion_edit, build_inline_edit, companion_path, read_bytes, write_file_edit

logger = logging.getLogger(__name__)

CHECK_BEFORE = "before-migrate"
CHECK_AFTER = "after"


class Typegen:
    """One generator instance; owns the per-run caches.

    Args:
        config: Resolved configuration
        preparer: Describe capability. Defaults to an asyncpg pool on
            ``config.connection_string``.
        catalog_source: Catalog capability. Defaults to the same pool.
    """

    def __init__(
        self,
        config: TypegenConfig,
        preparer: StatementPreparer | None = None,
        catalog_source: CatalogSource | None = None,
    ):
        self.config = config
        self.log = config.logger
        self.preparer = preparer
        self.catalog_source = catalog_source

        self.description_cache: dict[str, StatementDescription] = {}
        self.catalog: CatalogIntrospector | None = None
        self._run_task: asyncio.Task | None = None
        self._report: GenerateReport | None = None

    def clear_caches(self):
        self.description_cache.clear()
        self.catalog = None

    def cancel(self):
        """Cancel the run in progress. Files already written are kept."""
        if self._run_task is not None and not self._run_task.done():
            self.log.warning("Cancelling typegen run")
            self._run_task.cancel()

    async def generate(self) -> GenerateReport:
        if self._run_task is not None:
            raise RuntimeError("A typegen run is already in progress")

        self._run_task = asyncio.current_task()
        self.clear_caches()
        try:
            return await self._run()
        finally:
            self.clear_caches()
            self._run_task = None
            self._report = None

    async def _run(self) -> GenerateReport:
        config = self.config
        root = Path(config.root_dir).resolve()
        report = GenerateReport()
        self._report = report

        self.log.debug(f"Typegen config: {config.log_redacted()}")
        self._check_clean(CHECK_BEFORE, root)

        pool = None
        try:
            preparer, catalog_source, pool = await self._connect()
            self.catalog = await CatalogIntrospector.load(catalog_source, timeout=config.query_timeout)

            files = await self._extract_all(root, report)
            records = [record for f in files for record in f.records]
            report.queries_found = len(records)

            describer = StatementDescriber(
                preparer,
                self.catalog,
                concurrency=config.pool_size,
                cache=self.description_cache,
            )
            described = await describer.describe_all(record.sql for record in records)

            engine = self._inference_engine(self.catalog)
            inferred = {str(f.path): self._infer_file(f, described, engine, report) for f in files}

            await self._write_all(files, inferred, report)
        finally:
            if pool is not None:
                await pool.close()

        self._check_clean(CHECK_AFTER, root)

        summary = report.summary()
        if report.ok:
            self.log.info(summary)
        else:
            self.log.warning(summary)
        return report

    async def _connect(self) -> tuple[StatementPreparer, CatalogSource, asyncpg.Pool | None]:
        if self.preparer is not None and self.catalog_source is not None:
            return self.preparer, self.catalog_source, None

        config = self.config
        try:
            pool = await asyncio.wait_for(
                asyncpg.create_pool(
                    config.connection_string,
                    min_size=1,
                    max_size=config.pool_size,
                    timeout=config.connect_timeout,
                    command_timeout=config.query_timeout,
                ),
                timeout=config.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(
                f"Timed out connecting to database after {config.connect_timeout}s"
            ) from e
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise DatabaseConnectionError(f"Could not connect to database: {e}") from e

        preparer = self.preparer or AsyncpgPreparer(pool, timeout=config.query_timeout)
        catalog_source = self.catalog_source or AsyncpgCatalogSource(pool, timeout=config.query_timeout)
        return preparer, catalog_source, pool

    def _check_clean(self, point: str, root: Path):
        if point not in self.config.check_clean:
            return
        try:
            status = working_tree_status(root)
        except GitError as e:
            self.log.warning(f"Skipping {point} clean-tree check, not a git working tree: {e}")
            return
        if status:
            raise DirtyWorkingTreeError(point, status)

    async def _extract_all(self, root: Path, report: GenerateReport) -> list[ExtractedFile]:
        config = self.config
        try:
            paths = discover_files(root, config.include, config.exclude, since=config.since)
        except GitError as e:
            raise FatalError(f"Could not list files changed since {config.since}: {e}") from e
        except (FileNotFoundError, NotADirectoryError) as e:
            raise FatalError(str(e)) from e
        report.files_scanned = len(paths)

        semaphore = asyncio.Semaphore(config.max_concurrency)

        async def extract_one(path: Path) -> ExtractedFile | None:
            async with semaphore:
                try:
                    return await asyncio.to_thread(extract_file, path)
                except FileError as e:
                    self._file_error(e, report)
                    return None

        results = await asyncio.gather(*(extract_one(path) for path in paths))
        return [f for f in results if f is not None]

    def _inference_engine(self, catalog: CatalogIntrospector) -> InferenceEngine:
        config = self.config
        samples = TypeSampleResolver(config.type_parsers, sample_values=config.sample_values)
        return InferenceEngine(
            catalog,
            HostTypeResolver(catalog, samples, overrides=config.pg_type_to_host),
            policy=config.error_policy,
            default_type=config.default_type,
            on_warning=self._warning,
        )

    def _infer_file(
        self,
        extracted: ExtractedFile,
        described: Mapping[str, StatementDescription | QueryError],
        engine: InferenceEngine,
        report: GenerateReport,
    ) -> list[InferredQuery]:
        inferred = []
        for record in extracted.records:
            result = described[record.sql]
            if isinstance(result, QueryError):
                self._query_error(result.located(record.file_path), report)
                continue
            try:
                inferred.append(engine.infer(record, result))
            except QueryError as e:
                self._query_error(e.located(record.file_path), report)
        return inferred

    async def _write_all(
        self,
        files: list[ExtractedFile],
        inferred: dict[str, list[InferredQuery]],
        report: GenerateReport,
    ):
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def write_one(extracted: ExtractedFile):
            queries = inferred[str(extracted.path)]
            if not queries:
                report.files_unchanged.append(str(extracted.path))
                return
            async with semaphore:
                try:
                    edit = await asyncio.to_thread(self._build_edit, extracted, queries)
                    written = await asyncio.to_thread(write_file_edit, edit)
                except FileError as e:
                    self._file_error(e, report)
                    return
                except OSError as e:
                    self._file_error(FileError(f"Could not write file: {e}", str(extracted.path)), report)
                    return
            report.queries_generated += len(queries)
            if written:
                self.log.info(f"Updated {edit.file_path}")
                report.files_changed.append(edit.file_path)
            else:
                report.files_unchanged.append(edit.file_path)

        await asyncio.gather(*(write_one(f) for f in files))
        report.files_changed.sort()
        report.files_unchanged.sort()

    @staticmethod
    def _build_edit(extracted: ExtractedFile, queries: list[InferredQuery]) -> FileEdit:
        shapes = group_shapes(queries)
        if extracted.is_sql_file:
            target = companion_path(extracted.path)
            return build_companion_edit(str(extracted.path), read_bytes(target), shapes[0])
        inferred = {id(q.record) for q in queries}
        failed = [record for record in extracted.records if id(record) not in inferred]
        return build_inline_edit(str(extracted.path), extracted.content, shapes, failed)

    def _warning(self, message: str):
        self.log.warning(message)
        if self._report is not None:
            self._report.warnings.append(message)

    def _query_error(self, error: QueryError, report: GenerateReport):
        reported = ReportedError(kind="query", message=str(error), file_path=error.file_path, sql=error.sql)
        self.log.error(str(reported))
        report.errors.append(reported)
        report.queries_errored += 1

    def _file_error(self, error: FileError, report: GenerateReport):
        reported = ReportedError(kind="file", message=str(error), file_path=error.file_path)
        self.log.error(str(reported))
        report.errors.append(reported)
        report.files_errored.append(error.file_path)


def _as_config(options: TypegenConfig | Mapping[str, Any] | None) -> TypegenConfig:
    if isinstance(options, TypegenConfig):
        return options
    return resolve_config(options)


async def generate(
    options: TypegenConfig | Mapping[str, Any] | None = None,
    preparer: StatementPreparer | None = None,
    catalog_source: CatalogSource | None = None,
) -> GenerateReport:
    """Run typegen once.

    Args:
        options: A TypegenConfig, or a partial options mapping resolved
            against the defaults
        preparer: Optional describe capability (defaults to asyncpg)
        catalog_source: Optional catalog capability (defaults to asyncpg)

    Returns:
        GenerateReport with counts, errors and warnings

    Raises:
        FatalError: The run was aborted
    """
    return await Typegen(_as_config(options), preparer=preparer, catalog_source=catalog_source).generate()


def generate_sync(
    options: TypegenConfig | Mapping[str, Any] | None = None,
    preparer: StatementPreparer | None = None,
    catalog_source: CatalogSource | None = None,
) -> GenerateReport:
    """Blocking wrapper around ``generate``."""
    return asyncio.run(generate(options, preparer=preparer, catalog_source=catalog_source))
