"""
SynthGuard - static security analysis for generated smart-contract source.
"""

from .cfg_builder import CFGBuilder, ControlFlowGraph
from .config_manager import AnalyzerConfig, ConfigManager
from .contract_analyzer import ContractAnalyzer, ContractTemplate
from .findings import Finding, InputError, Severity
from .security_analyzer import AnalysisOptions, AnalysisReport, SecurityAnalyzer, validate_security_requirements

__version__ = "0.1.0"

__all__ = [
    "AnalysisOptions",
    "AnalysisReport",
    "AnalyzerConfig",
    "CFGBuilder",
    "ConfigManager",
    "ContractAnalyzer",
    "ContractTemplate",
    "ControlFlowGraph",
    "Finding",
    "InputError",
    "SecurityAnalyzer",
    "Severity",
    "validate_security_requirements",
]
