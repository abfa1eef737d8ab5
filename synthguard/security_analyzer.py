"""
Security Analyzer

Runs every detector over one contract, merges their findings and turns them
into a scored AnalysisReport:

1. Build (or reuse) the control-flow graph
2. Pattern catalog scan
3. Specialized analyzers (reentrancy, overflow, access control)
4. Data-flow analysis when requested
5. Deduplicate, bucket by severity, score, recommend

Each phase is isolated: an exception inside one detector becomes a
PHASE_FAILURE warning and the remaining phases still run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .access_control_analyzer import AccessControlAnalyzer
from .cfg_builder import CFGBuilder, ControlFlowGraph
from .config_manager import AnalyzerConfig
from .data_flow_analyzer import DataFlowAnalyzer
from .finding_deduplicator import FindingDeduplicator
from .findings import Finding, InputError, Severity
from .overflow_analyzer import OverflowAnalyzer
from .pattern_catalog import PatternCatalog
from .reentrancy_analyzer import ReentrancyAnalyzer

logger = logging.getLogger(__name__)

ANALYSIS_LEVELS = ('basic', 'standard', 'high')

ProgressCallback = Callable[[str, float], None]

SCORED_SEVERITIES = ('critical', 'high', 'medium', 'low')


@dataclass
class AnalysisOptions:
    level: str = "standard"  # basic, standard, high
    include_data_flow: bool = False
    include_dynamic_analysis: bool = False  # accepted, no dynamic phase exists
    timeout_ms: Optional[int] = None

    @classmethod
    def from_config(cls, config: AnalyzerConfig) -> "AnalysisOptions":
        return cls(level=config.default_level, include_data_flow=config.include_data_flow)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], config: Optional[AnalyzerConfig] = None) -> "AnalysisOptions":
        """Build options from a snake_case or camelCase mapping."""
        options = cls.from_config(config or AnalyzerConfig())
        aliases = {
            'level': 'level',
            'include_data_flow': 'include_data_flow',
            'includeDataFlow': 'include_data_flow',
            'include_dynamic_analysis': 'include_dynamic_analysis',
            'includeDynamicAnalysis': 'include_dynamic_analysis',
            'timeout_ms': 'timeout_ms',
            'timeoutMs': 'timeout_ms',
        }
        for key, value in data.items():
            if key in aliases:
                setattr(options, aliases[key], value)
        return options


# ---------------------------------------------------------------------------
# Report model
# ---------------------------------------------------------------------------

@dataclass
class SecurityMetrics:
    risk_score: float = 0
    complexity_score: float = 0
    attack_surface_area: float = 0
    security_coverage: float = 100
    vulnerabilities_by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'riskScore': self.risk_score,
            'complexityScore': self.complexity_score,
            'attackSurfaceArea': self.attack_surface_area,
            'securityCoverage': self.security_coverage,
            'vulnerabilitiesByType': dict(self.vulnerabilities_by_type),
        }


@dataclass
class Recommendation:
    type: str  # severity value
    title: str
    description: str
    impact: str
    remediation: str
    references: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'title': self.title,
            'description': self.description,
            'impact': self.impact,
            'remediation': self.remediation,
            'references': list(self.references),
        }


@dataclass
class AnalysisReport:
    is_secure: bool
    score: float
    critical_issues: List[Finding] = field(default_factory=list)
    high_issues: List[Finding] = field(default_factory=list)
    medium_issues: List[Finding] = field(default_factory=list)
    low_issues: List[Finding] = field(default_factory=list)
    warnings: List[Finding] = field(default_factory=list)
    metrics: SecurityMetrics = field(default_factory=SecurityMetrics)
    recommendations: List[Recommendation] = field(default_factory=list)

    @property
    def findings(self) -> List[Finding]:
        """All scored findings, most severe bucket first."""
        return self.critical_issues + self.high_issues + self.medium_issues + self.low_issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isSecure': self.is_secure,
            'score': self.score,
            'criticalIssues': [f.to_dict() for f in self.critical_issues],
            'highIssues': [f.to_dict() for f in self.high_issues],
            'mediumIssues': [f.to_dict() for f in self.medium_issues],
            'lowIssues': [f.to_dict() for f in self.low_issues],
            'warnings': [f.to_dict() for f in self.warnings],
            'metrics': self.metrics.to_dict(),
            'recommendations': [r.to_dict() for r in self.recommendations],
        }


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def count_by_severity(findings: List[Finding]) -> Dict[str, int]:
    counts = {severity: 0 for severity in SCORED_SEVERITIES}
    for finding in findings:
        if finding.severity.value in counts:
            counts[finding.severity.value] += 1
    return counts


def _weighted(counts: Dict[str, int], weights: Dict[str, float]) -> float:
    return sum(weights.get(severity, 0) * count for severity, count in counts.items())


def calculate_risk_score(counts: Dict[str, int], config: AnalyzerConfig) -> float:
    return min(100, _weighted(counts, config.risk_weights))


def calculate_security_coverage(counts: Dict[str, int], config: AnalyzerConfig) -> float:
    return max(0, 100 - _weighted(counts, config.coverage_penalties))


def _keyword_groups_score(findings: List[Finding], groups: List[Dict]) -> float:
    total = 0
    for group in groups:
        keywords = [k.upper() for k in group.get('keywords', [])]
        for finding in findings:
            if finding.severity.value != group.get('severity'):
                continue
            if any(keyword in finding.kind.upper() for keyword in keywords):
                total += group.get('weight', 0)
    return total


def calculate_complexity_score(findings: List[Finding], config: AnalyzerConfig) -> float:
    distinct_kinds = len({f.kind for f in findings})
    score = distinct_kinds * config.distinct_kind_weight
    score += _keyword_groups_score(findings, config.complexity_groups)
    return min(100, score)


def calculate_attack_surface(findings: List[Finding], config: AnalyzerConfig) -> float:
    return min(100, _keyword_groups_score(findings, config.attack_surface_groups))


def calculate_metrics(findings: List[Finding], config: AnalyzerConfig) -> SecurityMetrics:
    counts = count_by_severity(findings)
    by_type: Dict[str, int] = {}
    for finding in findings:
        by_type[finding.kind] = by_type.get(finding.kind, 0) + 1
    return SecurityMetrics(
        risk_score=calculate_risk_score(counts, config),
        complexity_score=calculate_complexity_score(findings, config),
        attack_surface_area=calculate_attack_surface(findings, config),
        security_coverage=calculate_security_coverage(counts, config),
        vulnerabilities_by_type=dict(sorted(by_type.items())),
    )


def calculate_score(counts: Dict[str, int], metrics: SecurityMetrics, config: AnalyzerConfig) -> float:
    score = 100 - _weighted(counts, config.score_penalties)
    score -= config.risk_factor * metrics.risk_score
    score -= config.complexity_factor * metrics.complexity_score
    score -= config.coverage_factor * (100 - metrics.security_coverage)
    return max(0, round(score, 2))


def determine_verdict(counts: Dict[str, int], score: float, metrics: SecurityMetrics,
                      config: AnalyzerConfig) -> bool:
    """Secure only when every gate passes; a high score cannot offset a critical issue."""
    return (
        counts['critical'] == 0
        and score >= config.min_secure_score
        and counts['high'] <= config.max_high_issues
        and metrics.security_coverage >= config.min_secure_coverage
    )


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

GENERIC_REMEDIATION = 'Review and update the code following security best practices'

REMEDIATIONS: Dict[str, str] = {
    'REENTRANCY': 'Implement a reentrancy guard using the ReentrancyGuard pattern and ensure all '
                  'state changes occur before external calls',
    'UNCHECKED_MATH': 'Use checked math operations or implement explicit overflow checks using safe math libraries',
    'ARBITRARY_JUMP': 'Remove dynamic jump operations and implement proper control flow mechanisms',
    'ACCESS_CONTROL': 'Implement proper access control mechanisms using program-derived addresses (PDAs)',
    'UNINITIALIZED_STATE': 'Add initialization checks and ensure proper state management',
    'TIMESTAMP_DEPENDENCE': 'Use block numbers or epochs instead of timestamps for time-sensitive operations',
    'DOS_VULNERABLE': 'Implement proper bounds checking and gas-efficient patterns',
    'PRICE_MANIPULATION': 'Use time-weighted average prices (TWAP) or other manipulation-resistant price feeds',
    'FLASH_LOAN_ATTACK': 'Implement proper checks and balances to prevent flash loan exploits',
    'FRONT_RUNNING': 'Implement commit-reveal schemes or other front-running protections',
}

BASE_REFERENCES = [
    'https://docs.solana.com/developing/security',
    'https://github.com/solana-labs/solana/tree/master/sdk/program',
]

REFERENCES: Dict[str, List[str]] = {
    'REENTRANCY': [
        'https://docs.solana.com/developing/security/reentrancy',
        'https://github.com/solana-labs/solana-program-library/tree/master/token/program',
    ],
    'UNCHECKED_MATH': [
        'https://docs.solana.com/developing/security/math',
        'https://github.com/solana-labs/solana/blob/master/sdk/program/src/math.rs',
    ],
    'ACCESS_CONTROL': [
        'https://docs.solana.com/developing/security/access-control',
        'https://github.com/solana-labs/solana-program-library/tree/master/token/program/src/state',
    ],
}

DEFAULT_IMPACTS = {
    'critical': 'Critical security vulnerability that could compromise the contract',
    'high': 'High-risk security vulnerability',
    'medium': 'Security weakness that could be exploited under specific conditions',
    'low': 'Minor issue that weakens the overall security posture',
}

TITLE_VERBS = {'critical': 'Fix', 'high': 'Address'}


def _readable_kind(kind: str) -> str:
    return kind.lower().replace('_', ' ')


def generate_recommendations(findings: List[Finding], metrics: SecurityMetrics,
                             config: AnalyzerConfig) -> List[Recommendation]:
    """One recommendation per distinct kind, plus metric-triggered ones, most severe first."""
    recommendations: List[Recommendation] = []
    seen = set()
    ordered = sorted(findings, key=lambda f: (-f.severity.rank, f.sort_key))
    for finding in ordered:
        if finding.kind in seen or finding.severity is Severity.INFO:
            continue
        seen.add(finding.kind)
        severity = finding.severity.value
        recommendations.append(Recommendation(
            type=severity,
            title=f"{TITLE_VERBS.get(severity, 'Review')} {_readable_kind(finding.kind)}",
            description=finding.message,
            impact=finding.impact or DEFAULT_IMPACTS[severity],
            remediation=REMEDIATIONS.get(finding.kind) or finding.remediation or GENERIC_REMEDIATION,
            references=BASE_REFERENCES + REFERENCES.get(finding.kind, []),
        ))

    if metrics.complexity_score > config.complexity_recommendation_threshold:
        recommendations.append(Recommendation(
            type='medium',
            title='Reduce code complexity',
            description='High code complexity increases the risk of vulnerabilities',
            impact='Complex code is harder to audit and more prone to bugs',
            remediation='Break down complex functions into smaller, more manageable pieces',
            references=[
                'https://docs.solana.com/developing/programming-model/overview',
                'https://github.com/solana-labs/solana/tree/master/sdk/program',
            ],
        ))

    if metrics.security_coverage < config.coverage_recommendation_threshold:
        recommendations.append(Recommendation(
            type='high',
            title='Improve security coverage',
            description='Security coverage is below recommended threshold',
            impact='Insufficient security measures could lead to vulnerabilities',
            remediation='Implement additional security checks and validations',
            references=[
                'https://docs.solana.com/developing/security',
                'https://github.com/solana-labs/solana-security-txt',
            ],
        ))

    # stable sort keeps finding-derived entries ahead of metric ones of equal severity
    return sorted(recommendations, key=lambda r: -Severity(r.type).rank)


def build_report(findings: List[Finding], warnings: List[Finding],
                 config: AnalyzerConfig) -> AnalysisReport:
    scored = [f for f in findings if f.severity is not Severity.INFO]
    warnings = list(warnings) + [f for f in findings if f.severity is Severity.INFO]

    counts = count_by_severity(scored)
    metrics = calculate_metrics(scored, config)
    score = calculate_score(counts, metrics, config)

    def bucket(severity: Severity) -> List[Finding]:
        return [f for f in scored if f.severity is severity]

    return AnalysisReport(
        is_secure=determine_verdict(counts, score, metrics, config),
        score=score,
        critical_issues=bucket(Severity.CRITICAL),
        high_issues=bucket(Severity.HIGH),
        medium_issues=bucket(Severity.MEDIUM),
        low_issues=bucket(Severity.LOW),
        warnings=warnings,
        metrics=metrics,
        recommendations=generate_recommendations(scored, metrics, config),
    )


SECURITY_REQUIREMENTS = (
    'NO_CRITICAL_ISSUES',
    'MIN_SECURITY_SCORE',
    'MIN_SECURITY_COVERAGE',
    'MAX_COMPLEXITY',
    'MAX_ATTACK_SURFACE',
)


def validate_security_requirements(report: AnalysisReport, requirements: Optional[List[str]] = None,
                                   config: Optional[AnalyzerConfig] = None) -> List[str]:
    """Return the requirements the report does not meet (empty when all pass)."""
    config = config or AnalyzerConfig()
    checks = {
        'NO_CRITICAL_ISSUES': lambda: not report.critical_issues,
        'MIN_SECURITY_SCORE': lambda: report.score >= config.min_secure_score,
        'MIN_SECURITY_COVERAGE': lambda: report.metrics.security_coverage >= config.min_secure_coverage,
        'MAX_COMPLEXITY': lambda: report.metrics.complexity_score <= config.complexity_recommendation_threshold,
        'MAX_ATTACK_SURFACE': lambda: report.metrics.attack_surface_area <= config.max_attack_surface,
    }
    unmet = []
    for requirement in requirements or SECURITY_REQUIREMENTS:
        check = checks.get(requirement)
        if check is None:
            logger.warning(f"Unknown security requirement: {requirement}")
            continue
        if not check():
            unmet.append(requirement)
    return unmet


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SecurityAnalyzer:
    """Runs all detectors over one contract and builds the AnalysisReport."""

    def __init__(self, config: Optional[AnalyzerConfig] = None,
                 catalog: Optional[PatternCatalog] = None):
        self.config = config or AnalyzerConfig()
        self.builder = CFGBuilder.from_config(self.config)
        self.catalog = catalog or PatternCatalog()
        self.data_flow_analyzer = DataFlowAnalyzer.from_config(self.config)
        self.reentrancy_analyzer = ReentrancyAnalyzer()
        self.overflow_analyzer = OverflowAnalyzer()
        self.access_control_analyzer = AccessControlAnalyzer()
        self.deduplicator = FindingDeduplicator()

    def validate_input(self, code: Any) -> None:
        if not isinstance(code, str):
            raise InputError(f"Source must be a string, got {type(code).__name__}")
        if len(code) > self.config.max_source_chars:
            raise InputError(
                f"Source is {len(code)} characters, limit is {self.config.max_source_chars}"
            )
        line_count = code.count('\n') + 1
        if line_count > self.config.max_source_lines:
            raise InputError(
                f"Source has {line_count} lines, limit is {self.config.max_source_lines}"
            )

    def resolve_options(self, options: Union[AnalysisOptions, Mapping[str, Any], None]) -> AnalysisOptions:
        if options is None:
            options = AnalysisOptions.from_config(self.config)
        elif isinstance(options, Mapping):
            options = AnalysisOptions.from_dict(options, self.config)
        level = str(options.level).lower()
        if level not in ANALYSIS_LEVELS:
            raise InputError(f"Unknown analysis level '{options.level}', expected one of {ANALYSIS_LEVELS}")
        options.level = level

        if options.timeout_ms is not None:
            try:
                timeout_ms = int(options.timeout_ms)
            except (TypeError, ValueError):
                raise InputError(f"Timeout must be a whole number of milliseconds, got {options.timeout_ms!r}")
            if timeout_ms < 0:
                raise InputError(f"Timeout must not be negative, got {timeout_ms}")
            options.timeout_ms = timeout_ms
        return options

    def analyze(self, code: str, options: Union[AnalysisOptions, Mapping[str, Any], None] = None,
                cfg: Optional[ControlFlowGraph] = None, contract_name: str = "contract",
                progress: Optional[ProgressCallback] = None,
                extra_findings: Optional[List[Finding]] = None) -> AnalysisReport:
        """
        Analyze one contract source.

        Args:
            code: contract source text
            options: AnalysisOptions or a mapping of option names
            cfg: pre-built graph for ``code``; built here when omitted
            contract_name: used in log messages only
            progress: called as ``progress(phase, fraction)`` after each phase
            extra_findings: findings produced elsewhere, scored with the rest

        Raises:
            InputError: when the source fails the size guards or options are invalid
        """
        self.validate_input(code)
        options = self.resolve_options(options)
        if options.include_dynamic_analysis:
            logger.debug("Dynamic analysis requested; no dynamic phase is available")

        findings: List[Finding] = list(extra_findings or [])
        warnings: List[Finding] = []
        graph = {'cfg': cfg}

        phases = self._plan_phases(code, options, graph)
        started = time.monotonic()
        for index, (name, phase) in enumerate(phases):
            if self._out_of_time(started, options.timeout_ms):
                skipped = ", ".join(n for n, _ in phases[index:])
                logger.warning(f"Analysis of {contract_name} timed out; skipped phases: {skipped}")
                warnings.append(Finding(
                    kind='ANALYSIS_TIMEOUT',
                    severity=Severity.INFO,
                    message=f"Analysis exceeded {options.timeout_ms} ms; skipped phases: {skipped}",
                ))
                break

            findings.extend(self._run_phase(name, phase, contract_name, warnings))
            if progress is not None:
                try:
                    progress(name, (index + 1) / len(phases))
                except Exception as e:
                    logger.warning(f"Progress callback failed after {name} for {contract_name}: {e}")

        deduplicated = self.deduplicator.process_findings(findings)
        report = build_report(deduplicated, warnings, self.config)
        logger.debug(
            f"Analysis of {contract_name}: score {report.score}, secure={report.is_secure}, "
            f"{len(report.findings)} findings, {len(report.warnings)} warnings"
        )
        return report

    def _plan_phases(self, code: str, options: AnalysisOptions, graph: Dict[str, Optional[ControlFlowGraph]]):
        def build_cfg() -> List[Finding]:
            graph['cfg'] = self.builder.build(code)
            return []

        def on_graph(analyzer) -> Callable[[], List[Finding]]:
            def run() -> List[Finding]:
                if graph['cfg'] is None:
                    raise RuntimeError("control-flow graph is unavailable")
                return analyzer(graph['cfg'])
            return run

        phases = []
        if graph['cfg'] is None:
            phases.append(('cfg_build', build_cfg))
        phases.append(('pattern_scan', lambda: self.catalog.scan(code)))
        phases.append(('reentrancy', on_graph(self.reentrancy_analyzer.analyze)))
        if options.level in ('standard', 'high'):
            phases.append(('overflow', on_graph(self.overflow_analyzer.analyze)))
            phases.append(('access_control', on_graph(self.access_control_analyzer.analyze)))
        if options.include_data_flow or options.level == 'high':
            phases.append(('data_flow', on_graph(self.data_flow_analyzer.analyze)))
        return phases

    def _run_phase(self, name: str, phase: Callable[[], List[Finding]], contract_name: str,
                   warnings: List[Finding]) -> List[Finding]:
        try:
            results = phase()
            logger.debug(f"Phase {name} produced {len(results)} findings")
            return results
        except Exception as e:
            logger.warning(f"{name} failed for {contract_name}: {e}")
            warnings.append(Finding(
                kind='PHASE_FAILURE',
                severity=Severity.INFO,
                message=f"Phase '{name}' failed: {type(e).__name__}: {e}",
            ))
            return []

    def _out_of_time(self, started: float, timeout_ms: Optional[int]) -> bool:
        if timeout_ms is None:
            return False
        return (time.monotonic() - started) * 1000 >= timeout_ms
