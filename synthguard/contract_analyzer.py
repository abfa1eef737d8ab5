"""
Contract Analyzer

Entry point for callers holding a structural contract template (schemas,
instructions, accounts) rather than only source text. The template is
checked for layout and account invariants first; those findings are then
scored together with the security pass over the contract source.
"""

import logging
import re
import textwrap
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from .config_manager import AnalyzerConfig
from .findings import Finding, InputError, Severity
from .security_analyzer import AnalysisOptions, AnalysisReport, ProgressCallback, SecurityAnalyzer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Template model
# ---------------------------------------------------------------------------

@dataclass
class SchemaField:
    name: str
    type: Any = 'u8'
    size: int = 0
    offset: Optional[int] = None
    is_optional: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SchemaField":
        return cls(
            name=data['name'],
            type=data.get('type', 'u8'),
            size=int(data.get('size', 0)),
            offset=_optional_int(data.get('offset')),
            is_optional=bool(data.get('isOptional', data.get('is_optional', False))),
        )


@dataclass
class ContractSchema:
    name: str
    fields: List[SchemaField] = None
    size: Optional[int] = None
    version: int = 1
    discriminator: Optional[int] = None

    def __post_init__(self):
        if self.fields is None:
            self.fields = []

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContractSchema":
        return cls(
            name=data['name'],
            fields=[_coerce(SchemaField, f) for f in data.get('fields') or []],
            size=_optional_int(data.get('size')),
            version=data.get('version', 1),
            discriminator=data.get('discriminator'),
        )


@dataclass
class PdaSeed:
    type: Any = 'bytes'
    path: Optional[str] = None
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PdaSeed":
        return cls(type=data.get('type', 'bytes'), path=data.get('path'), value=data.get('value'))


@dataclass
class AccountMeta:
    name: str
    is_signer: bool = False
    is_writable: bool = False
    is_pda: bool = False
    seeds: List[PdaSeed] = None

    def __post_init__(self):
        if self.seeds is None:
            self.seeds = []

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccountMeta":
        return cls(
            name=data['name'],
            is_signer=bool(data.get('isSigner', data.get('is_signer', False))),
            is_writable=bool(data.get('isWritable', data.get('is_writable', False))),
            is_pda=bool(data.get('isPda', data.get('is_pda', False))),
            seeds=[_coerce(PdaSeed, s) for s in data.get('seeds') or []],
        )


@dataclass
class ArgumentTemplate:
    name: str
    type: Any = 'u64'

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArgumentTemplate":
        return cls(name=data['name'], type=data.get('type', 'u64'))


@dataclass
class InstructionTemplate:
    name: str
    accounts: List[AccountMeta] = None
    args: List[ArgumentTemplate] = None
    code: str = ""

    def __post_init__(self):
        if self.accounts is None:
            self.accounts = []
        if self.args is None:
            self.args = []

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InstructionTemplate":
        return cls(
            name=data['name'],
            accounts=[_coerce(AccountMeta, a) for a in data.get('accounts') or []],
            args=[_coerce(ArgumentTemplate, a) for a in data.get('args') or []],
            code=data.get('code') or "",
        )


@dataclass
class ContractTemplate:
    name: str
    version: str = "0.1.0"
    description: str = ""
    schemas: List[ContractSchema] = None
    instructions: List[InstructionTemplate] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.schemas is None:
            self.schemas = []
        if self.instructions is None:
            self.instructions = []
        if self.metadata is None:
            self.metadata = {}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContractTemplate":
        """Build a template from its JSON shape (camelCase keys are accepted)."""
        return cls(
            name=data['name'],
            version=str(data.get('version', "0.1.0")),
            description=data.get('description') or "",
            schemas=[_coerce(ContractSchema, s) for s in data.get('schemas') or []],
            instructions=[_coerce(InstructionTemplate, i) for i in data.get('instructions') or []],
            metadata=dict(data.get('metadata') or {}),
        )


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _coerce(cls, value):
    return value if isinstance(value, cls) else cls.from_dict(value)


# ---------------------------------------------------------------------------
# Source rendering
# ---------------------------------------------------------------------------

RUST_TYPES = {
    'pubkey': 'Pubkey',
    'string': 'String',
    'bytes': 'Vec<u8>',
    'bool': 'bool',
}


def rust_type(field_type: Any) -> str:
    if isinstance(field_type, str):
        return RUST_TYPES.get(field_type, field_type)
    return 'Vec<u8>'


def snake_case(name: str) -> str:
    name = re.sub(r'[^0-9A-Za-z]+', '_', name)
    name = re.sub(r'(?<=[a-z0-9])([A-Z])', r'_\1', name)
    return name.strip('_').lower() or 'program'


def pascal_case(name: str) -> str:
    return ''.join(part[:1].upper() + part[1:] for part in snake_case(name).split('_'))


def _render_seed(seed: PdaSeed) -> str:
    if seed.path:
        return f"{seed.path}.as_ref()"
    if seed.value is not None:
        return f'b"{seed.value}"'
    return 'b"seed"'


def render_source(template: ContractTemplate) -> str:
    """Render an Anchor-style program from the template's instructions."""
    lines = ["use anchor_lang::prelude::*;", "", "#[program]", f"pub mod {snake_case(template.name)} {{",
             "    use super::*;"]
    for instruction in template.instructions:
        params = [f"ctx: Context<{pascal_case(instruction.name)}>"]
        params.extend(f"{arg.name}: {rust_type(arg.type)}" for arg in instruction.args)
        lines.append("")
        lines.append(f"    pub fn {instruction.name}({', '.join(params)}) -> Result<()> {{")
        body = textwrap.dedent(instruction.code).strip()
        if body:
            lines.extend(textwrap.indent(body, " " * 8).split('\n'))
        if not body.split('\n')[-1].strip().startswith('Ok('):
            lines.append("        Ok(())")
        lines.append("    }")
    lines.append("}")

    for instruction in template.instructions:
        lines.extend(["", "#[derive(Accounts)]", f"pub struct {pascal_case(instruction.name)}<'info> {{"])
        for account in instruction.accounts:
            attributes = []
            if account.is_writable:
                attributes.append('mut')
            if account.is_pda and account.seeds:
                seeds = ", ".join(_render_seed(s) for s in account.seeds)
                attributes.append(f"seeds = [{seeds}], bump")
            if attributes:
                lines.append(f"    #[account({', '.join(attributes)})]")
            account_type = "Signer<'info>" if account.is_signer else "AccountInfo<'info>"
            lines.append(f"    pub {account.name}: {account_type},")
        lines.append("}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class ContractAnalyzer:
    """Structural template checks followed by the full security pass."""

    def __init__(self, config: Optional[AnalyzerConfig] = None,
                 security_analyzer: Optional[SecurityAnalyzer] = None):
        self.config = config or AnalyzerConfig()
        self.security_analyzer = security_analyzer or SecurityAnalyzer(self.config)

    def analyze_contract(self, template: Union[ContractTemplate, Mapping[str, Any]],
                         code: Optional[str] = None,
                         options: Union[AnalysisOptions, Mapping[str, Any], None] = None,
                         progress: Optional[ProgressCallback] = None) -> AnalysisReport:
        """
        Validate the template and analyze its source.

        When ``code`` is omitted the source is rendered from the instruction
        bodies. Structural problems are reported as findings, never raised.
        """
        template = self.coerce_template(template)
        structural = self.validate_structure(template)
        if structural:
            logger.info(f"Template {template.name} has {len(structural)} structural findings")

        source = code if code is not None else render_source(template)
        return self.security_analyzer.analyze(
            source,
            options,
            contract_name=template.name,
            progress=progress,
            extra_findings=structural,
        )

    def coerce_template(self, template: Any) -> ContractTemplate:
        if isinstance(template, ContractTemplate):
            return template
        if isinstance(template, Mapping):
            try:
                return ContractTemplate.from_dict(template)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise InputError(f"Malformed contract template: {e}") from e
        raise InputError(f"Template must be a ContractTemplate or a mapping, got {type(template).__name__}")

    def validate_structure(self, template: ContractTemplate) -> List[Finding]:
        findings = []
        for schema in template.schemas:
            findings.extend(self.check_schema(schema))
        for instruction in template.instructions:
            findings.extend(self.check_instruction(instruction))
        return findings

    def check_schema(self, schema: ContractSchema) -> List[Finding]:
        """Offsets must equal the running size sum; the schema size must equal the total."""
        findings = []
        expected_offset = 0
        for field_ in schema.fields:
            if field_.offset is not None and field_.offset != expected_offset:
                findings.append(Finding(
                    kind='INVALID_FIELD_OFFSET',
                    severity=Severity.HIGH,
                    message=f"Field '{field_.name}' in schema '{schema.name}' has offset "
                            f"{field_.offset}, expected {expected_offset}",
                    impact='Account data is read from the wrong bytes, corrupting state',
                    remediation='Recompute field offsets as the running sum of preceding field sizes',
                ))
            expected_offset += field_.size

        if schema.size is not None and schema.size != expected_offset:
            findings.append(Finding(
                kind='INVALID_SCHEMA_SIZE',
                severity=Severity.HIGH,
                message=f"Schema '{schema.name}' declares size {schema.size}, fields total {expected_offset}",
                impact='Accounts allocated with the wrong size fail to deserialize or truncate data',
                remediation='Set the schema size to the sum of its field sizes',
            ))
        return findings

    def check_instruction(self, instruction: InstructionTemplate) -> List[Finding]:
        findings = []
        seen = set()
        reported = set()
        for account in instruction.accounts:
            if account.name in seen and account.name not in reported:
                reported.add(account.name)
                findings.append(Finding(
                    kind='DUPLICATE_ACCOUNT',
                    severity=Severity.HIGH,
                    message=f"Account '{account.name}' appears more than once in instruction '{instruction.name}'",
                    impact='The same account can be passed in two roles, bypassing per-account checks',
                    remediation='Give every account in an instruction a distinct name and role',
                ))
            seen.add(account.name)

            if account.is_pda and not account.seeds:
                findings.append(Finding(
                    kind='MISSING_PDA_SEEDS',
                    severity=Severity.CRITICAL,
                    message=f"PDA account '{account.name}' in instruction '{instruction.name}' declares no seeds",
                    impact='An attacker can substitute any account for the program-derived address',
                    remediation='Declare the seeds and bump used to derive the address',
                    cwe='CWE-345',
                ))
        return findings
