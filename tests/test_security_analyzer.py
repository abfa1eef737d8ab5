"""
Tests for the SecurityAnalyzer orchestrator and its scoring pipeline.

Covers:
- Scoring formulas (risk, coverage, complexity, attack surface, score)
- Verdict gates
- Recommendation ordering and references
- Phase planning per analysis level, progress reporting
- Phase isolation (one failing detector does not abort the run)
- Timeouts and input guards
- validate_security_requirements
"""

import logging
from unittest.mock import Mock

import pytest

from synthguard.config_manager import AnalyzerConfig
from synthguard.findings import Finding, InputError, Severity
from synthguard.security_analyzer import (
    AnalysisOptions,
    SecurityAnalyzer,
    SecurityMetrics,
    build_report,
    calculate_metrics,
    determine_verdict,
    validate_security_requirements,
)


def finding(kind, severity, line=1, message="issue"):
    return Finding(kind=kind, severity=severity, message=message, line=line)


def record_progress(calls):
    return lambda name, fraction: calls.append((name, fraction))


# ── Scoring ─────────────────────────────────────────────────────


class TestScoring:

    def test_single_critical(self, config):
        report = build_report([finding('REENTRANCY', Severity.CRITICAL)], [], config)
        assert report.metrics.risk_score == 25
        assert report.metrics.security_coverage == 85
        assert report.metrics.complexity_score == 5
        assert report.score == 73.0
        assert report.is_secure is False

    def test_keyword_groups(self, config):
        metrics = calculate_metrics([finding('EXTERNAL_CALL', Severity.CRITICAL)], config)
        assert metrics.complexity_score == 15
        assert metrics.attack_surface_area == 15
        assert metrics.vulnerabilities_by_type == {'EXTERNAL_CALL': 1}

    def test_score_and_risk_are_clamped(self, config):
        findings = [finding(f'KIND_{i}', Severity.CRITICAL, line=i + 1) for i in range(10)]
        report = build_report(findings, [], config)
        assert report.metrics.risk_score == 100
        assert report.metrics.security_coverage == 0
        assert report.score == 0

    def test_info_findings_become_warnings(self, config):
        report = build_report([finding('NOTE', Severity.INFO, message="fyi")], [], config)
        assert report.findings == []
        assert [w.kind for w in report.warnings] == ['NOTE']
        assert report.score == 100
        assert report.is_secure is True
        assert report.recommendations == []

    def test_verdict_gates(self, config):
        metrics = SecurityMetrics(security_coverage=90)
        counts = {'critical': 0, 'high': 2, 'medium': 0, 'low': 0}
        assert determine_verdict(counts, 90, metrics, config) is True
        assert determine_verdict(dict(counts, high=3), 90, metrics, config) is False
        assert determine_verdict(dict(counts, critical=1), 100, metrics, config) is False
        assert determine_verdict(counts, 69.99, metrics, config) is False
        assert determine_verdict(counts, 90, SecurityMetrics(security_coverage=79), config) is False

    def test_custom_weights(self):
        config = AnalyzerConfig(score_penalties={'critical': 50, 'high': 10, 'medium': 5, 'low': 2})
        report = build_report([finding('REENTRANCY', Severity.CRITICAL)], [], config)
        assert report.score == 43.0


# ── Recommendations ─────────────────────────────────────────────


class TestRecommendations:

    def test_ordering_and_references(self, config):
        findings = [
            finding('REENTRANCY', Severity.CRITICAL, line=1),
            finding('UNCHECKED_MATH', Severity.HIGH, line=2),
            finding('UNCHECKED_MATH', Severity.HIGH, line=3),
            finding('TIMESTAMP_DEPENDENCE', Severity.MEDIUM, line=4),
        ]
        report = build_report(findings, [], config)
        assert report.metrics.security_coverage == 60
        assert [r.title for r in report.recommendations] == [
            'Fix reentrancy',
            'Address unchecked math',
            'Improve security coverage',
            'Review timestamp dependence',
        ]
        math = report.recommendations[1]
        assert math.type == 'high'
        assert len(math.references) == 4
        assert len(report.recommendations[3].references) == 2

    def test_unknown_kind_uses_finding_text(self, config):
        custom = Finding('ODD_THING', Severity.LOW, 'odd', 1, remediation='Do the odd fix')
        report = build_report([custom], [], config)
        assert report.recommendations[0].remediation == 'Do the odd fix'
        assert report.recommendations[0].title == 'Review odd thing'


# ── End-to-end scenarios ────────────────────────────────────────


class TestAnalyzeSource:

    def test_unguarded_transfer_is_insecure(self, security_analyzer, unguarded_source):
        report = security_analyzer.analyze(unguarded_source)
        reentrancy = [f for f in report.critical_issues if f.kind == 'REENTRANCY']
        assert len(reentrancy) == 1
        assert reentrancy[0].line == 3
        assert 'MISSING_SIGNER_CHECK' in [f.kind for f in report.critical_issues]
        assert report.is_secure is False
        assert report.score == 46.0

    def test_guarded_vault_is_secure(self, security_analyzer, guarded_source):
        report = security_analyzer.analyze(guarded_source)
        assert report.critical_issues == []
        assert report.high_issues == []
        assert report.score >= 70
        assert report.is_secure is True

    def test_repeat_runs_are_identical(self, security_analyzer, reentrant_solidity):
        first = security_analyzer.analyze(reentrant_solidity).to_dict()
        second = security_analyzer.analyze(reentrant_solidity).to_dict()
        assert first == second

    def test_report_dict_shape(self, security_analyzer, unguarded_source):
        data = security_analyzer.analyze(unguarded_source).to_dict()
        assert set(data) == {
            'isSecure', 'score', 'criticalIssues', 'highIssues', 'mediumIssues',
            'lowIssues', 'warnings', 'metrics', 'recommendations',
        }
        assert data['criticalIssues'][0]['severity'] == 'critical'
        assert 'riskScore' in data['metrics']

    def test_prebuilt_graph_is_reused(self, security_analyzer, builder, unguarded_source):
        calls = []
        cfg = builder.build(unguarded_source)
        security_analyzer.analyze(unguarded_source, cfg=cfg, progress=record_progress(calls))
        assert 'cfg_build' not in [name for name, _ in calls]


# ── Phases ──────────────────────────────────────────────────────


class TestPhases:

    def test_default_progress(self, security_analyzer, unguarded_source):
        calls = []
        security_analyzer.analyze(unguarded_source, progress=record_progress(calls))
        assert [name for name, _ in calls] == [
            'cfg_build', 'pattern_scan', 'reentrancy', 'overflow', 'access_control']
        fractions = [fraction for _, fraction in calls]
        assert fractions == sorted(fractions)
        assert fractions[-1] == 1.0

    @pytest.mark.parametrize("options, expected", [
        ({'level': 'basic'}, ['cfg_build', 'pattern_scan', 'reentrancy']),
        ({'level': 'HIGH'}, ['cfg_build', 'pattern_scan', 'reentrancy', 'overflow',
                             'access_control', 'data_flow']),
        ({'includeDataFlow': True}, ['cfg_build', 'pattern_scan', 'reentrancy', 'overflow',
                                     'access_control', 'data_flow']),
    ])
    def test_levels_select_phases(self, security_analyzer, unguarded_source, options, expected):
        calls = []
        security_analyzer.analyze(unguarded_source, options, progress=record_progress(calls))
        assert [name for name, _ in calls] == expected

    def test_basic_level_skips_access_control(self, security_analyzer, unguarded_source):
        report = security_analyzer.analyze(unguarded_source, AnalysisOptions(level='basic'))
        assert 'MISSING_SIGNER_CHECK' not in [f.kind for f in report.findings]

    def test_failing_phase_becomes_warning(self, security_analyzer, unguarded_source):
        security_analyzer.overflow_analyzer.analyze = Mock(side_effect=RuntimeError("boom"))
        report = security_analyzer.analyze(unguarded_source)

        failures = [w for w in report.warnings if w.kind == 'PHASE_FAILURE']
        assert len(failures) == 1
        assert failures[0].message == "Phase 'overflow' failed: RuntimeError: boom"
        assert failures[0].severity is Severity.INFO
        # later phases still ran
        assert 'MISSING_SIGNER_CHECK' in [f.kind for f in report.findings]

    def test_failing_progress_callback_still_reports(self, security_analyzer, unguarded_source, caplog):
        notifier = Mock(side_effect=RuntimeError("notifier down"))
        with caplog.at_level(logging.WARNING):
            report = security_analyzer.analyze(unguarded_source, progress=notifier)

        assert notifier.call_count == 5
        assert 'REENTRANCY' in [f.kind for f in report.findings]
        assert report.is_secure is False
        assert "notifier down" in caplog.text

    def test_timeout_skips_remaining_phases(self, security_analyzer, unguarded_source):
        calls = []
        report = security_analyzer.analyze(
            unguarded_source, {'timeoutMs': 0}, progress=record_progress(calls))
        assert calls == []
        assert [w.kind for w in report.warnings] == ['ANALYSIS_TIMEOUT']
        assert 'cfg_build' in report.warnings[0].message

    def test_dynamic_analysis_flag_is_accepted(self, security_analyzer, guarded_source):
        report = security_analyzer.analyze(guarded_source, {'includeDynamicAnalysis': True})
        assert report.is_secure is True


# ── Input guards ────────────────────────────────────────────────


class TestInputGuards:

    def test_non_string_source(self, security_analyzer):
        with pytest.raises(InputError):
            security_analyzer.analyze(123)

    def test_unknown_level(self, security_analyzer, unguarded_source):
        with pytest.raises(InputError, match="extreme"):
            security_analyzer.analyze(unguarded_source, {'level': 'extreme'})

    def test_numeric_string_timeout(self, security_analyzer, unguarded_source):
        options = security_analyzer.resolve_options({'timeoutMs': '5000'})
        assert options.timeout_ms == 5000
        report = security_analyzer.analyze(unguarded_source, {'timeoutMs': '5000'})
        assert not any(w.kind == 'ANALYSIS_TIMEOUT' for w in report.warnings)

    @pytest.mark.parametrize("timeout", ['soon', -1, [5]])
    def test_invalid_timeout(self, security_analyzer, unguarded_source, timeout):
        with pytest.raises(InputError, match="Timeout"):
            security_analyzer.analyze(unguarded_source, {'timeoutMs': timeout})

    def test_line_limit(self):
        analyzer = SecurityAnalyzer(AnalyzerConfig(max_source_lines=2))
        with pytest.raises(InputError, match="lines"):
            analyzer.analyze("a\nb\nc")

    def test_char_limit(self):
        analyzer = SecurityAnalyzer(AnalyzerConfig(max_source_chars=10))
        with pytest.raises(InputError, match="characters"):
            analyzer.analyze("x" * 11)

    def test_empty_source_is_secure(self, security_analyzer):
        report = security_analyzer.analyze("")
        assert report.findings == []
        assert report.is_secure is True


# ── Requirements ────────────────────────────────────────────────


class TestSecurityRequirements:

    def test_unmet_requirements(self, security_analyzer, unguarded_source, config):
        report = security_analyzer.analyze(unguarded_source)
        assert validate_security_requirements(report, config=config) == [
            'NO_CRITICAL_ISSUES', 'MIN_SECURITY_SCORE', 'MIN_SECURITY_COVERAGE']

    def test_secure_report_meets_everything(self, security_analyzer, guarded_source):
        report = security_analyzer.analyze(guarded_source)
        assert validate_security_requirements(report) == []

    def test_unknown_requirement_logged(self, security_analyzer, guarded_source, caplog):
        report = security_analyzer.analyze(guarded_source)
        with caplog.at_level(logging.WARNING, logger='synthguard.security_analyzer'):
            assert validate_security_requirements(report, ['BOGUS']) == []
        assert 'BOGUS' in caplog.text
