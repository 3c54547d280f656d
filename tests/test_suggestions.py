"""Tests for severity, the rule library, collapsing and the suggestion engine."""

import pytest

from ecoplan.config import CollapseMode, Config, RuleConfig
from ecoplan.exceptions import ExplainerError, RuleError
from ecoplan.extraction import RawMetrics, StructuralFlags, extract_metrics
from ecoplan.suggestions import (
    SUGGESTION_LIBRARY,
    EvaluatedSuggestion,
    ExplainerRegistry,
    ExplanationContext,
    RuleRunStatus,
    Severity,
    SuggestionEngine,
    SuggestionKind,
    SuggestionTemplate,
    TriggeringNode,
    collapse,
    evaluate_severity,
    finalize_remedy,
    get_template,
)
from ecoplan.suggestions.engine import filter_saturated
from ecoplan.suggestions.explainers import Explainer
from ecoplan.suggestions.library import recommended_work_mem_mb
from ecoplan.suggestions.registry import get_registry
from ecoplan.tree import ImpactNode


# ── Helpers ──────────────────────────────────────────────────────────────


def evaluated(
    template_id: str,
    node_id: str,
    score: float,
    severity: Severity = Severity.HIGH,
    kind: SuggestionKind = SuggestionKind.CORRECTIVE,
) -> EvaluatedSuggestion:
    return EvaluatedSuggestion(
        template_id=template_id,
        kind=kind,
        severity=severity,
        text=f"{template_id} text",
        remedy=f"{template_id} remedy",
        triggering_node=TriggeringNode(id=node_id, value=score),
        score=score,
    )


def make_context(
    plan: str = "",
    saturation: float = 0.5,
    metrics: RawMetrics | None = None,
    dominant: tuple[str, ...] = (),
    **leaf_values: float,
) -> ExplanationContext:
    """A flat resolved tree: root at `saturation` over the given leaves."""
    tree = ImpactNode(
        id="query_impact",
        label="Query Impact",
        value=saturation,
        children=[
            ImpactNode(id=node_id, label=node_id.title(), value=value)
            for node_id, value in leaf_values.items()
        ],
    )
    return ExplanationContext(
        impact_tree=tree,
        impact_saturation=saturation,
        dominant_nodes=[leaf for leaf in tree.children if leaf.id in dominant],
        metrics=metrics or RawMetrics(),
        flags=StructuralFlags(),
        plan=plan,
    )


def template(
    template_id: str = "TEST_RULE",
    kind: SuggestionKind = SuggestionKind.CORRECTIVE,
    trigger_nodes: tuple[str, ...] = ("waste",),
    min_impact: float = 0.5,
    remedy: str = "Fix it.",
    validate=None,
) -> SuggestionTemplate:
    return SuggestionTemplate(
        id=template_id,
        text="Test rule.",
        remedy=remedy,
        kind=kind,
        trigger_nodes=trigger_nodes,
        min_impact=min_impact,
        validate=validate,
    )


def engine_for(*templates: SuggestionTemplate, **config_overrides) -> SuggestionEngine:
    return SuggestionEngine(
        config=Config(**config_overrides),
        registry=ExplainerRegistry(),
        library=templates,
    )


# ── Severity ─────────────────────────────────────────────────────────────


class TestSeverity:
    """Tests for severity ordering and kind baselines."""

    def test_ordering(self):
        assert Severity.INFO < Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL
        assert max(Severity.LOW, Severity.CRITICAL, Severity.MEDIUM) is Severity.CRITICAL
        assert Severity.HIGH >= Severity.HIGH

    def test_kind_baselines(self):
        assert SuggestionKind.CORRECTIVE.baseline_severity is Severity.HIGH
        assert SuggestionKind.PREVENTIVE.baseline_severity is Severity.MEDIUM
        assert SuggestionKind.OPTIMIZATION.baseline_severity is Severity.MEDIUM
        assert SuggestionKind.OPPORTUNISTIC.baseline_severity is Severity.INFO

    def test_explicit_severity_overrides_kind(self):
        assert get_template("PARTIAL_INDEX").base_severity is Severity.LOW
        assert get_template("HIGH_WASTE_SCAN").base_severity is Severity.HIGH


class TestEvaluateSeverity:
    """Tests for rule escalations and saturation promotion."""

    def test_disk_sort_by_spill_volume(self):
        disk_sort = get_template("DISK_SORT")

        assert evaluate_severity(disk_sort, RawMetrics(temp_files_mb=52.97), 0.1) is Severity.CRITICAL
        assert evaluate_severity(disk_sort, RawMetrics(temp_files_mb=20), 0.1) is Severity.HIGH
        assert evaluate_severity(disk_sort, RawMetrics(), 0.1) is Severity.HIGH

    def test_small_cartesian_is_medium(self):
        """A cross join over a handful of rows is usually intentional."""
        cartesian = get_template("CARTESIAN_PRODUCT")

        assert evaluate_severity(cartesian, RawMetrics(actual_rows=10), 0.1) is Severity.MEDIUM
        assert evaluate_severity(cartesian, RawMetrics(actual_rows=1000), 0.1) is Severity.CRITICAL

    def test_loop_explosion(self):
        loops = get_template("LOOP_EXPLOSION")

        assert evaluate_severity(loops, RawMetrics(max_loops=1_000_001), 0.1) is Severity.CRITICAL
        assert evaluate_severity(loops, RawMetrics(max_loops=1_000_000), 0.1) is Severity.HIGH

    def test_recursive_depth(self):
        recursive = get_template("RECURSIVE_BOMB")

        assert evaluate_severity(recursive, RawMetrics(recursive_depth=25_000), 0.1) is Severity.CRITICAL
        assert evaluate_severity(recursive, RawMetrics(recursive_depth=10), 0.1) is Severity.HIGH

    def test_heap_fetches(self):
        index = get_template("INEFFICIENT_INDEX")

        assert evaluate_severity(index, RawMetrics(heap_fetches=60_000), 0.1) is Severity.CRITICAL
        assert evaluate_severity(index, RawMetrics(heap_fetches=6_000), 0.1) is Severity.HIGH
        assert evaluate_severity(index, RawMetrics(heap_fetches=100), 0.1) is Severity.MEDIUM

    def test_saturation_promotes_medium(self):
        degraded = get_template("PARALLEL_DEGRADED")

        assert evaluate_severity(degraded, RawMetrics(), 0.9) is Severity.HIGH
        assert evaluate_severity(degraded, RawMetrics(), 0.8) is Severity.MEDIUM

    def test_saturation_never_downgrades(self):
        assert evaluate_severity(get_template("PARTIAL_INDEX"), RawMetrics(), 0.99) is Severity.LOW
        assert evaluate_severity(get_template("PARALLEL_CRITICAL"), RawMetrics(), 0.99) is Severity.CRITICAL

    def test_custom_escalation_threshold(self):
        degraded = get_template("PARALLEL_DEGRADED")
        assert evaluate_severity(degraded, RawMetrics(), 0.6, escalation_saturation=0.5) is Severity.HIGH


# ── Library ──────────────────────────────────────────────────────────────


class TestLibrary:
    """Tests for the static template library."""

    def test_unique_ids(self):
        ids = [t.id for t in SUGGESTION_LIBRARY]
        assert len(ids) == len(set(ids))

    def test_gates_are_valid(self):
        for t in SUGGESTION_LIBRARY:
            assert 0.0 <= t.min_impact <= 1.0, t.id
            assert t.trigger_nodes, t.id

    def test_get_template(self):
        assert get_template("DISK_SORT").kind is SuggestionKind.CORRECTIVE
        assert get_template("NOT_A_RULE") is None

    def test_parallel_validators(self):
        never = "Workers Planned: 2\nWorkers Launched: 0"
        partial = "Workers Planned: 4\nWorkers Launched: 1"

        assert get_template("PARALLEL_CRITICAL").validate(never)
        assert not get_template("PARALLEL_CRITICAL").validate(partial)
        assert get_template("PARALLEL_DEGRADED").validate(partial)
        assert not get_template("PARALLEL_DEGRADED").validate(never)

    def test_parallel_validators_match_metrics_over_gathers(self):
        """Several Gather nodes aggregate the same way as the extracted metrics."""
        plan = (
            "Workers Planned: 2\nWorkers Launched: 0\n"
            "Workers Planned: 4\nWorkers Launched: 3\n"
        )
        metrics = extract_metrics(plan)

        assert (metrics.workers_planned, metrics.workers_launched) == (4, 3)
        assert get_template("PARALLEL_DEGRADED").validate(plan)
        assert not get_template("PARALLEL_CRITICAL").validate(plan)

    def test_sample_validators(
        self,
        memory_killer_plan,
        high_waste_plan,
        cartesian_plan,
        jit_parallel_plan,
        correlated_subplan_plan,
        external_sort_plan,
        clean_plan,
    ):
        assert get_template("DISK_SORT").validate(memory_killer_plan)
        assert get_template("PARTIAL_INDEX").validate(high_waste_plan)
        assert get_template("CARTESIAN_PRODUCT").validate(cartesian_plan)
        assert get_template("JSONB_FILTER").validate(jit_parallel_plan)
        assert get_template("JIT_OVERHEAD").validate(jit_parallel_plan)
        assert get_template("CORRELATED_SUBPLAN").validate(correlated_subplan_plan)
        assert get_template("MISSING_SORT_INDEX").validate(external_sort_plan)

        assert not get_template("JSONB_FILTER").validate(high_waste_plan)
        assert not get_template("CARTESIAN_PRODUCT").validate(clean_plan)
        assert not get_template("DISK_SORT").validate(clean_plan)


class TestRemedy:
    """Tests for remedy placeholders."""

    def test_recommended_work_mem(self):
        assert recommended_work_mem_mb(0) == 64
        assert recommended_work_mem_mb(10) == 64
        assert recommended_work_mem_mb(52.97) == 96
        assert recommended_work_mem_mb(100) == 160

    def test_placeholders(self):
        metrics = RawMetrics(temp_files_mb=52.97, max_loops=1_000_000, jit_time_ms=556.254)

        assert finalize_remedy("work_mem = {work_mem}", metrics) == "work_mem = 96MB"
        assert finalize_remedy("{loops} loops", metrics) == "1,000,000 loops"
        assert finalize_remedy("{jit_ms} ms", metrics) == "556 ms"

    def test_rows_fall_back_to_estimate(self):
        metrics = RawMetrics(actual_rows=0, planned_rows=500)
        assert finalize_remedy("{rows} rows", metrics) == "500 rows"

    def test_unknown_placeholder_keeps_text(self):
        assert finalize_remedy("Use {nope}.", RawMetrics()) == "Use {nope}."

    def test_plain_text(self):
        assert finalize_remedy("Nothing to fill.", RawMetrics()) == "Nothing to fill."

    def test_waste_share_from_dominant_node(self):
        waste = ImpactNode(id="waste", label="Waste", value=0.934)

        remedy = finalize_remedy(
            "Index it.", RawMetrics(), template_id="HIGH_WASTE_SCAN", dominant_nodes=[waste]
        )

        assert remedy == "Index it. (~93% of the rows read are discarded.)"

    def test_waste_share_needs_dominant_waste(self):
        cpu = ImpactNode(id="cpu", label="CPU", value=0.95)

        assert finalize_remedy(
            "Index it.", RawMetrics(), template_id="HIGH_WASTE_SCAN", dominant_nodes=[cpu]
        ) == "Index it."
        assert finalize_remedy(
            "Index it.", RawMetrics(), template_id="DISK_SORT",
            dominant_nodes=[ImpactNode(id="waste", label="Waste", value=0.9)],
        ) == "Index it."


# ── Filtering and collapsing ─────────────────────────────────────────────


class TestFilterSaturated:
    """Tests for the saturation noise gate."""

    def test_drops_noise_when_saturated(self):
        suggestions = [
            evaluated("A", "waste", 0.9),
            evaluated("B", "waste", 0.8, severity=Severity.INFO),
            evaluated("C", "waste", 0.7, severity=Severity.LOW, kind=SuggestionKind.OPPORTUNISTIC),
        ]

        kept = filter_saturated(suggestions, 0.9, threshold=0.7)

        assert [s.template_id for s in kept] == ["A"]

    def test_keeps_everything_at_threshold(self):
        suggestions = [evaluated("B", "waste", 0.8, severity=Severity.INFO)]
        assert filter_saturated(suggestions, 0.7, threshold=0.7) == suggestions


class TestCollapse:
    """Tests for TEMPLATE and NODE collapse modes."""

    def test_template_mode_keeps_best_score(self):
        suggestions = [
            evaluated("A", "waste", 0.6),
            evaluated("A", "complexity", 0.9),
            evaluated("B", "waste", 0.7),
        ]

        result = collapse(suggestions, CollapseMode.TEMPLATE)

        assert [(s.template_id, s.triggering_node.id) for s in result] == [
            ("A", "complexity"),
            ("B", "waste"),
        ]

    def test_severity_before_score(self):
        suggestions = [
            evaluated("A", "waste", 0.99, severity=Severity.MEDIUM),
            evaluated("B", "io", 0.5, severity=Severity.CRITICAL),
        ]
        assert [s.template_id for s in collapse(suggestions)] == ["B", "A"]

    def test_node_mode_one_per_node(self):
        suggestions = [
            evaluated("A", "waste", 0.6),
            evaluated("B", "waste", 0.9),
            evaluated("C", "complexity", 0.5),
        ]

        result = collapse(suggestions, CollapseMode.NODE)

        assert sorted(s.template_id for s in result) == ["B", "C"]

    def test_node_mode_precedence(self):
        """Recursion outranks waste at equal severity."""
        suggestions = [
            evaluated("WASTE", "waste", 0.9),
            evaluated("RECURSION", "recursive_expansion", 0.7),
        ]

        assert [s.template_id for s in collapse(suggestions, CollapseMode.NODE)] == [
            "RECURSION", "WASTE",
        ]
        assert [s.template_id for s in collapse(suggestions, CollapseMode.TEMPLATE)] == [
            "WASTE", "RECURSION",
        ]

    def test_max_suggestions(self):
        suggestions = [evaluated(name, "waste", 0.5) for name in ("A", "B", "C")]

        assert len(collapse(suggestions, max_suggestions=2)) == 2
        assert collapse(suggestions, max_suggestions=0) == []
        assert len(collapse(suggestions, max_suggestions=None)) == 3

    def test_empty(self):
        assert collapse([]) == []


# ── Engine ───────────────────────────────────────────────────────────────


class _BrokenExplainer(Explainer):
    template_ids = ("TEST_RULE",)

    def extract_evidence(self, plan, metrics):
        raise RuntimeError("explainer exploded")

    def build_explanation(self, suggestion, node, context):
        return "unreachable"


class TestSuggestionEngine:
    """Tests for the evaluate/filter/collapse/explain pipeline."""

    def test_match_and_explain(self):
        engine = engine_for(template(remedy="Runs {loops} times."))
        context = make_context(saturation=0.5, metrics=RawMetrics(max_loops=1000), waste=0.6)

        explained, rule_runs = engine.generate(context)

        assert len(explained) == 1
        suggestion = explained[0]
        assert suggestion.id == "TEST_RULE"
        assert suggestion.severity is Severity.HIGH
        assert suggestion.remedy == "Runs 1,000 times."
        assert suggestion.evidence == []
        assert "Triggered by **Waste** at 60% impact." in suggestion.explanation
        assert suggestion.impact_summary.node == "waste"
        assert suggestion.impact_summary.value == 0.6
        assert suggestion.impact_summary.contribution == round(0.6 / 1.1 * 100)
        assert rule_runs[0].status is RuleRunStatus.PASS
        assert rule_runs[0].matches == 1

    def test_injected_empty_registry_is_kept(self):
        empty = ExplainerRegistry()

        engine = SuggestionEngine(config=Config(), registry=empty)

        assert engine.registry is empty
        assert engine.registry is not get_registry()

    def test_default_registry_is_global(self):
        assert SuggestionEngine(config=Config()).registry is get_registry()

    def test_remedy_notes_dominant_waste(self):
        engine = engine_for(template("HIGH_WASTE_SCAN", remedy="Index it."))

        explained, _ = engine.generate(make_context(waste=0.9, dominant=("waste",)))

        assert explained[0].remedy == "Index it. (~90% of the rows read are discarded.)"

    def test_below_min_impact(self):
        engine = engine_for(template(min_impact=0.7))
        explained, rule_runs = engine.generate(make_context(waste=0.6))

        assert explained == []
        assert rule_runs[0].status is RuleRunStatus.PASS
        assert rule_runs[0].matches == 0

    def test_validator_must_corroborate(self):
        engine = engine_for(template(validate=lambda plan: "Seq Scan" in plan))

        assert engine.generate(make_context(plan="Index Scan", waste=0.9))[0] == []
        assert len(engine.generate(make_context(plan="Seq Scan", waste=0.9))[0]) == 1

    def test_multiple_trigger_nodes_collapse(self):
        engine = engine_for(template(trigger_nodes=("waste", "complexity")))
        context = make_context(waste=0.6, complexity=0.9)

        evaluated_only, rule_runs = engine.evaluate(context)
        explained, _ = engine.generate(context)

        assert rule_runs[0].matches == 2
        assert len(evaluated_only) == 2
        assert len(explained) == 1
        assert explained[0].impact_summary.node == "complexity"

    def test_disabled_rule_is_skipped(self):
        engine = engine_for(template(), rules={"TEST_RULE": RuleConfig(enabled=False)})
        explained, rule_runs = engine.generate(make_context(waste=0.9))

        assert explained == []
        assert rule_runs[0].status is RuleRunStatus.SKIP
        assert rule_runs[0].skip_reason == "Disabled by configuration"

    def test_failing_validator_is_isolated(self):
        def boom(plan: str) -> bool:
            raise ValueError("boom")

        engine = engine_for(template("BROKEN", validate=boom), template("HEALTHY"))
        explained, rule_runs = engine.generate(make_context(waste=0.9))

        statuses = {run.rule_id: run.status for run in rule_runs}
        assert statuses == {"BROKEN": RuleRunStatus.FAIL, "HEALTHY": RuleRunStatus.PASS}
        assert rule_runs[0].error_summary == "boom"
        assert [s.id for s in explained] == ["HEALTHY"]

    def test_fail_fast_raises_rule_error(self):
        def boom(plan: str) -> bool:
            raise ValueError("boom")

        engine = engine_for(template("BROKEN", validate=boom), fail_fast=True)

        with pytest.raises(RuleError) as exc_info:
            engine.generate(make_context(waste=0.9))

        assert exc_info.value.rule_id == "BROKEN"
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_explainer_failure_falls_back(self):
        engine = engine_for(template())
        engine.registry.register(_BrokenExplainer)

        explained, _ = engine.generate(make_context(waste=0.9))

        assert explained[0].explanation.startswith("### Test rule.")

    def test_explainer_failure_with_fail_fast(self):
        engine = engine_for(template(), fail_fast=True)
        engine.registry.register(_BrokenExplainer)

        with pytest.raises(ExplainerError) as exc_info:
            engine.generate(make_context(waste=0.9))
        assert exc_info.value.template_id == "TEST_RULE"

    def test_saturated_plans_drop_opportunistic(self):
        engine = engine_for(template(kind=SuggestionKind.OPPORTUNISTIC))

        assert engine.generate(make_context(saturation=0.9, waste=0.9))[0] == []
        assert len(engine.generate(make_context(saturation=0.5, waste=0.9))[0]) == 1

    def test_saturation_promotes_in_pipeline(self):
        engine = engine_for(template(kind=SuggestionKind.PREVENTIVE))

        low, _ = engine.generate(make_context(saturation=0.5, waste=0.9))
        high, _ = engine.generate(make_context(saturation=0.85, waste=0.9))

        assert low[0].severity is Severity.MEDIUM
        assert high[0].severity is Severity.HIGH

    def test_zero_total_impact(self):
        """min_impact 0 can fire on an all-zero tree without dividing by zero."""
        engine = engine_for(template(min_impact=0.0))
        explained, _ = engine.generate(make_context(saturation=0.0, waste=0.0))
        assert explained[0].impact_summary.contribution == 0

    def test_one_rule_run_per_template(self):
        engine = SuggestionEngine(config=Config())
        _, rule_runs = engine.generate(make_context(waste=0.1))
        assert [run.rule_id for run in rule_runs] == [t.id for t in SUGGESTION_LIBRARY]
