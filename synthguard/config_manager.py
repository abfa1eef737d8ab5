#!/usr/bin/env python3
"""
Configuration Manager for SynthGuard

Holds every heuristic constant used by the analyzers (scoring weights,
iteration caps, input guards, verdict thresholds) so they can be tuned
from a YAML file without touching the analysis code.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, List, Optional
from dataclasses import dataclass, asdict, fields

from rich.console import Console


DEFAULT_CONFIG_FILE = "~/.synthguard/config.yaml"


@dataclass
class AnalyzerConfig:
    """Tunable constants for a SynthGuard analysis run."""

    # Fixed-point and enumeration caps
    max_iterations: int = 1000
    max_paths: int = 1000
    max_path_steps: int = 100000

    # Input guards
    max_source_chars: int = 1_000_000
    max_source_lines: int = 50_000

    # Defaults for AnalysisOptions
    default_level: str = "standard"  # basic, standard, high
    include_data_flow: bool = False

    # Scoring weights, keyed by severity
    risk_weights: Dict[str, float] = None
    coverage_penalties: Dict[str, float] = None
    score_penalties: Dict[str, float] = None
    risk_factor: float = 0.2
    complexity_factor: float = 0.1
    coverage_factor: float = 0.1

    # Complexity / attack-surface keyword groups
    distinct_kind_weight: float = 5
    complexity_groups: List[Dict] = None
    attack_surface_groups: List[Dict] = None

    # Verdict thresholds
    min_secure_score: float = 70
    max_high_issues: int = 2
    min_secure_coverage: float = 80

    # Metric-triggered recommendations
    complexity_recommendation_threshold: float = 70
    coverage_recommendation_threshold: float = 80

    # validate_security_requirements
    max_attack_surface: float = 60

    def __post_init__(self):
        if self.risk_weights is None:
            self.risk_weights = {'critical': 25, 'high': 15, 'medium': 10, 'low': 5}
        if self.coverage_penalties is None:
            self.coverage_penalties = {'critical': 15, 'high': 10, 'medium': 5, 'low': 2}
        if self.score_penalties is None:
            self.score_penalties = {'critical': 20, 'high': 10, 'medium': 5, 'low': 2}
        if self.complexity_groups is None:
            self.complexity_groups = [
                {'severity': 'critical', 'keywords': ['INTERACTION', 'CALL'], 'weight': 10},
                {'severity': 'high', 'keywords': ['STATE', 'STORAGE'], 'weight': 8},
            ]
        if self.attack_surface_groups is None:
            self.attack_surface_groups = [
                {'severity': 'critical', 'keywords': ['EXTERNAL', 'PUBLIC'], 'weight': 15},
                {'severity': 'high', 'keywords': ['STORAGE', 'STATE'], 'weight': 10},
                {'severity': 'medium', 'keywords': ['COMPLEX', 'CALCULATION'], 'weight': 5},
            ]


class ConfigManager:
    """Loads, saves and displays the SynthGuard configuration."""

    def __init__(self, config_file: Optional[str] = None):
        config_file = config_file or os.getenv("SYNTHGUARD_CONFIG") or DEFAULT_CONFIG_FILE
        self.config_file = Path(config_file).expanduser()
        self.console = Console()
        self.config = AnalyzerConfig()

    def load_config(self) -> AnalyzerConfig:
        """Load configuration from file, keeping defaults for anything missing."""
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    data = yaml.safe_load(f)

                if isinstance(data, dict):
                    self.update(**data)

            except Exception as e:
                self.console.print(f"[yellow]Warning: Could not load config file: {e}[/yellow]")
                self.config = AnalyzerConfig()
        return self.config

    def save_config(self) -> None:
        """Save current configuration to file."""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.dump(asdict(self.config), f, default_flow_style=False, indent=2)

            self.console.print(f"[green]Configuration saved to {self.config_file}[/green]")

        except Exception as e:
            self.console.print(f"[red]Failed to save config: {e}[/red]")

    def update(self, **kwargs) -> None:
        """Update known settings; unknown keys are ignored."""
        known = {f.name for f in fields(AnalyzerConfig)}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.config, key, value)

    def show_config(self) -> None:
        """Display current configuration."""
        from rich.table import Table

        main_table = Table(title="SynthGuard Configuration")
        main_table.add_column("Setting", style="cyan")
        main_table.add_column("Value", style="green")

        main_table.add_row("Max Iterations", str(self.config.max_iterations))
        main_table.add_row("Max Paths", str(self.config.max_paths))
        main_table.add_row("Max Source Size", f"{self.config.max_source_chars} chars / {self.config.max_source_lines} lines")
        main_table.add_row("Default Level", self.config.default_level)
        main_table.add_row("Data Flow", "Yes" if self.config.include_data_flow else "No")
        main_table.add_row(
            "Verdict",
            f"score >= {self.config.min_secure_score}, high <= {self.config.max_high_issues}, "
            f"coverage >= {self.config.min_secure_coverage}",
        )

        self.console.print(main_table)

        weights_table = Table(title="Severity Weights")
        weights_table.add_column("Severity", style="cyan")
        weights_table.add_column("Risk", style="red")
        weights_table.add_column("Coverage Penalty", style="yellow")
        weights_table.add_column("Score Penalty", style="white")

        for severity in ('critical', 'high', 'medium', 'low'):
            weights_table.add_row(
                severity,
                str(self.config.risk_weights.get(severity, 0)),
                str(self.config.coverage_penalties.get(severity, 0)),
                str(self.config.score_penalties.get(severity, 0)),
            )

        self.console.print(weights_table)
        self.console.print(f"\n[bold cyan]Config File:[/bold cyan] {self.config_file}")
