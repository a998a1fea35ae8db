import os
import time
import logging
import threading
import dataclasses
from typing import Any, Dict, List, Optional

import pandas as pd

from config import config, Config
from semantic.chart_generator import ChartGenerator
from semantic.db import DatabaseManager
from semantic.entitlements import FLAGS, FlagOracle
from semantic.errors import (CapacityExceeded, ExecutionLimitExceeded, MalformedModelOutput,
                             ProfilingInProgress, ValidationError)
from semantic.memory import memory_monitor
from semantic.metadata_cache import MetadataCache
from semantic.persistence import DurableStore, QueryPersistence, TransientStore
from semantic.profiler import TableProfiler
from semantic.prompt_translator import SemanticPromptTranslator
from semantic.sanitizer import frame_to_rows
from semantic.schema import SchemaRegistry
from semantic.slice_generator import SliceGenerator
from semantic.translator import QueryTranslator
from semantic.types import (AnalysisResult, ColumnMetadata, PerformanceMetrics, PinnedItem,
                            ProfileOutcome, QuerySpec)

logger = logging.getLogger(__name__)

ROW_COUNT_MEASURE = "row_count"


class SemanticSystem:
    """
    Semantic analytics facade.

    Wires the schema registry, engine, model, metadata cache and pin store
    together. Every collaborator can be passed in; anything omitted is built
    from `settings` (the global config by default). The language model is
    only loaded on the first natural-language prompt.
    """

    def __init__(self, settings: Optional[Config] = None,
                 registry: Optional[SchemaRegistry] = None,
                 db_manager: Optional[DatabaseManager] = None,
                 llm_manager: Any = None,
                 metadata_cache: Optional[MetadataCache] = None,
                 persistence: Optional[QueryPersistence] = None,
                 flags: Optional[FlagOracle] = None,
                 profiler: Optional[TableProfiler] = None,
                 chart_generator: Optional[ChartGenerator] = None,
                 slice_generator: Optional[SliceGenerator] = None):
        self.settings = settings or config
        self.registry = registry or SchemaRegistry.from_file(self.settings.semantic.layer_path)
        self.db_manager = db_manager or DatabaseManager(self.settings.database)
        self.flags = flags or FlagOracle(self.settings.flags.defaults)
        self.metadata_cache = metadata_cache or MetadataCache(
            self.settings.cache.metadata_path, limit=self.settings.cache.metadata_limit
        )
        self.persistence = persistence or QueryPersistence(
            self.flags.can_persist,
            TransientStore(self.settings.persistence.transient_limit),
            DurableStore(self.settings.persistence.durable_path),
        )
        self.profiler = profiler or TableProfiler(
            self.settings.cache.top_values_max_distinct, self.settings.cache.top_values_limit
        )
        self.translator = QueryTranslator(self.registry)
        self.chart_generator = chart_generator or ChartGenerator()
        self.slice_generator = slice_generator or SliceGenerator(self.registry.hierarchies)

        self._llm_manager = llm_manager
        self._prompt_translator: Optional[SemanticPromptTranslator] = None
        self.metrics = PerformanceMetrics()

        self._profiling = set()
        self._profiling_lock = threading.Lock()

    # ---------------- Language model -----------------
    def _model_config(self):
        tier = self.flags.variation(FLAGS.MODEL_TIER, "3b")
        path = self.settings.model.tier_model_paths.get(tier)
        if path and os.path.exists(path) and path != self.settings.model.model_path:
            logger.info(f"Using {tier} model tier")
            return dataclasses.replace(self.settings.model, model_path=path)
        return self.settings.model

    @property
    def prompt_translator(self) -> SemanticPromptTranslator:
        if self._prompt_translator is None:
            if self._llm_manager is None:
                from semantic.llm_manager import LLMManager
                self._llm_manager = LLMManager(self._model_config())
            self._prompt_translator = SemanticPromptTranslator(
                self._llm_manager,
                self.registry,
                self.translator,
                temperature=self.settings.model.temperature,
                max_tokens=self.settings.model.max_tokens,
                correction_attempts=self.settings.model.correction_attempts,
            )
        return self._prompt_translator

    # ---------------- Profiling -----------------
    def profile_table(self, table_name: str, force: bool = False) -> ProfileOutcome:
        """
        Profile a table and cache its column metadata.

        A full cache is reported as status "at_limit" rather than raised; the
        caller must delete a cached table first. A second request for a table
        that is still being profiled raises ProfilingInProgress.
        """
        cache = self.metadata_cache
        if not force and cache.contains(table_name):
            return ProfileOutcome("cached", table_name, cache.get(table_name), cache.get_status())

        if not cache.contains(table_name) and cache.is_at_limit():
            status = cache.get_status()
            logger.warning(f"Not profiling {table_name}: metadata cache is full ({status.count}/{status.limit})")
            return ProfileOutcome("at_limit", table_name, [], status)

        with self._profiling_lock:
            if table_name in self._profiling:
                raise ProfilingInProgress(table_name)
            self._profiling.add(table_name)

        try:
            with memory_monitor.monitor_operation("profile", table_name):
                columns = self.profiler.profile(self.db_manager, table_name)
            try:
                cache.save(table_name, columns)
            except CapacityExceeded as e:
                logger.warning(str(e))
                return ProfileOutcome("at_limit", table_name, columns, e.status)
            self.metrics.profiles_run += 1
            return ProfileOutcome("profiled", table_name, columns, cache.get_status())
        finally:
            with self._profiling_lock:
                self._profiling.discard(table_name)

    # ---------------- Query paths -----------------
    def ask(self, prompt: str, pin: bool = False) -> AnalysisResult:
        """Natural language -> validated spec -> result."""
        try:
            history = self.persistence.load_all()[:5]
            spec = self.prompt_translator.translate(prompt, history=history)
        except (ValidationError, MalformedModelOutput) as e:
            self._record_failure(e)
            raise
        logger.info(f"Prompt resolved to {spec.table}: measures={spec.measures} dimensions={spec.dimensions}")
        return self.run_spec(spec, pin=pin, prompt=prompt)

    def run_spec(self, spec: QuerySpec, pin: bool = False, prompt: str = "") -> AnalysisResult:
        """Structured spec -> SQL on the semantic model -> result."""
        start_time = time.time()
        try:
            translated = self.translator.translate_spec(spec)
            model = self.registry.get(spec.table)
            result = self._execute(translated.sql)
            rows = frame_to_rows(result.data)
            chart = self.chart_generator.generate(translated.spec, rows, model)
            slice_obj = self.slice_generator.build(translated.columns, model)
        except Exception as e:
            self._record_failure(e)
            raise

        analysis = AnalysisResult(
            sql=translated.sql,
            rows=rows,
            chart=chart,
            slice=slice_obj,
            warnings=translated.warnings,
            spec=translated.spec,
            prompt=prompt,
            execution_time=time.time() - start_time,
        )
        self._update_metrics(result, analysis)
        if pin:
            analysis.pinned_id = self._pin(analysis, translated.spec.table)
        return analysis

    def run_sql(self, sql: str, pin: bool = False) -> AnalysisResult:
        """
        Hand-written SQL -> pivot-ready SQL -> result.

        The query is stripped of its grouping and aggregation so the pivot can
        re-aggregate; the chart is built from a pandas re-aggregation of the
        returned rows using the slice layout.
        """
        start_time = time.time()
        try:
            translated = self.translator.translate_sql(sql)
            table_name = self.translator.table_for_sql(sql) or ""
            model = self.translator.model_for_sql(sql)
            profile = self.metadata_cache.get(table_name) if table_name else None

            result = self._execute(translated.sql)
            rows = frame_to_rows(result.data)
            slice_obj = self.slice_generator.build(translated.columns, model, profile)

            spec, chart_frame = self._aggregate_for_chart(result.data, slice_obj, model.key if model else table_name)
            chart = self.chart_generator.generate(spec, frame_to_rows(chart_frame), model)
        except Exception as e:
            self._record_failure(e)
            raise

        analysis = AnalysisResult(
            sql=translated.sql,
            rows=rows,
            chart=chart,
            slice=slice_obj,
            warnings=translated.warnings,
            spec=spec,
            execution_time=time.time() - start_time,
        )
        self._update_metrics(result, analysis)
        if pin:
            analysis.pinned_id = self._pin(analysis, table_name)
        return analysis

    def _aggregate_for_chart(self, df: pd.DataFrame, slice_obj: Dict[str, Any], table: str):
        """Group raw rows the way the pivot would, for the chart preview."""
        dims = [f["uniqueName"] for f in slice_obj["rows"] + slice_obj["columns"]
                if f["uniqueName"] != "Measures" and f["uniqueName"] in df.columns]
        measures = [m for m in slice_obj["measures"] if m["uniqueName"] in df.columns]

        frame = df.copy()
        aggregations = {}
        for measure in measures:
            name = measure["uniqueName"]
            if measure["aggregation"] == "distinctcount":
                aggregations[name] = "nunique"
            else:
                frame[name] = pd.to_numeric(frame[name], errors="coerce")
                aggregations[name] = "sum"

        if not aggregations:
            if dims:
                grouped = frame.groupby(dims, dropna=False, sort=False).size().reset_index(name=ROW_COUNT_MEASURE)
            else:
                grouped = pd.DataFrame({ROW_COUNT_MEASURE: [len(frame)]})
            measure_names = [ROW_COUNT_MEASURE]
        elif dims:
            grouped = frame.groupby(dims, dropna=False, sort=False).agg(aggregations).reset_index()
            measure_names = list(aggregations)
        else:
            grouped = frame.agg(aggregations).to_frame().T
            measure_names = list(aggregations)

        return QuerySpec(table=table, measures=measure_names, dimensions=dims), grouped

    def _execute(self, sql: str):
        max_rows = self.flags.variation(FLAGS.DATA_LIMIT, self.settings.database.max_result_rows)
        with memory_monitor.monitor_operation("query"):
            return self.db_manager.execute_query(sql, max_rows=max_rows)

    def _pin(self, analysis: AnalysisResult, table_name: str) -> str:
        item = PinnedItem.create(
            table_name=table_name,
            sql=analysis.sql,
            prompt=analysis.prompt,
            explanation=analysis.spec.explanation if analysis.spec else "",
            chart_config=analysis.chart.to_dict(),
            spec=analysis.spec.to_dict() if analysis.spec else None,
        )
        self.persistence.save(item)
        return item.id

    def _record_failure(self, error: Exception) -> None:
        self.metrics.errors += 1
        if isinstance(error, ExecutionLimitExceeded):
            self.metrics.limit_errors += 1
            logger.error(f"Query exceeded the data limit: {error}")
        elif isinstance(error, (ValidationError, MalformedModelOutput)):
            self.metrics.validation_errors += 1
            logger.error(f"Query rejected: {error}")
        else:
            logger.error(f"Query failed: {error}")

    def _update_metrics(self, result, analysis: AnalysisResult) -> None:
        self.metrics.query_count += 1
        self.metrics.total_execution_time += analysis.execution_time
        self.metrics.memory_peak_mb = max(self.metrics.memory_peak_mb, result.memory_usage_mb)

    # ---------------- Cache and pins -----------------
    def cache_status(self):
        return self.metadata_cache.get_status()

    def cached_columns(self, table_name: str) -> Optional[List[ColumnMetadata]]:
        return self.metadata_cache.get(table_name)

    def delete_cached_table(self, table_name: str) -> bool:
        return self.metadata_cache.delete(table_name)

    def clear_cache(self) -> None:
        self.metadata_cache.clear_all()

    def pins(self, table_name: Optional[str] = None) -> List[PinnedItem]:
        return self.persistence.load_all(table_name)

    def delete_pin(self, item_id: str) -> bool:
        return self.persistence.delete(item_id)

    def clear_pins(self) -> None:
        self.persistence.clear_all()

    def get_performance_report(self) -> Dict[str, Any]:
        """Generate performance report."""
        avg_execution_time = (self.metrics.total_execution_time /
                              max(1, self.metrics.query_count))
        status = self.metadata_cache.get_status()
        return {
            "query_metrics": {
                "total_queries": self.metrics.query_count,
                "total_execution_time": self.metrics.total_execution_time,
                "average_execution_time": avg_execution_time,
                "errors": self.metrics.errors,
                "limit_errors": self.metrics.limit_errors,
                "validation_errors": self.metrics.validation_errors,
            },
            "cache_metrics": {
                "cached_tables": status.count,
                "limit": status.limit,
                "is_at_limit": status.is_at_limit,
                "profiles_run": self.metrics.profiles_run,
            },
            "memory_metrics": dict(memory_monitor.report(), query_peak_mb=self.metrics.memory_peak_mb),
            "llm_metrics": self._llm_info(),
            "pins": {
                "durable": self.flags.can_persist(),
                "count": len(self.persistence.load_all()),
            },
        }

    def _llm_info(self) -> Dict[str, Any]:
        info = getattr(self._llm_manager, "get_model_info", None)
        return info() if info else {"model_loaded": False}

    def close(self) -> None:
        self.db_manager.close_all()
