"""Tests for template validation, source rendering and the ContractAnalyzer facade."""

import pytest

from synthguard.contract_analyzer import (
    AccountMeta,
    ContractAnalyzer,
    ContractSchema,
    ContractTemplate,
    InstructionTemplate,
    PdaSeed,
    SchemaField,
    pascal_case,
    render_source,
    rust_type,
    snake_case,
)
from synthguard.findings import InputError, Severity


@pytest.fixture
def analyzer(config):
    return ContractAnalyzer(config)


def kinds(findings):
    return [f.kind for f in findings]


MISALIGNED_SCHEMA = {
    'name': 'Vault',
    'schemas': [{
        'name': 'VaultState',
        'fields': [
            {'name': 'bump', 'type': 'u32', 'size': 4, 'offset': 0},
            {'name': 'balance', 'type': 'u64', 'size': 8, 'offset': 4},
            {'name': 'flag', 'type': 'bool', 'size': 1, 'offset': 20},
        ],
    }],
}

SEEDLESS_PDA = {
    'name': 'Vault',
    'instructions': [{
        'name': 'initialize',
        'accounts': [
            {'name': 'vault', 'isPda': True, 'isWritable': True, 'seeds': []},
            {'name': 'payer', 'isSigner': True, 'isWritable': True},
        ],
    }],
}


class TestTemplateModel:

    def test_camel_case_keys(self):
        template = ContractTemplate.from_dict(SEEDLESS_PDA)
        vault, payer = template.instructions[0].accounts
        assert vault.is_pda and vault.is_writable and not vault.is_signer
        assert payer.is_signer
        assert template.version == "0.1.0"

    def test_nested_objects_pass_through(self):
        schema = ContractSchema(name='S', fields=[SchemaField(name='a', size=4)])
        template = ContractTemplate.from_dict({'name': 'T', 'schemas': [schema]})
        assert template.schemas[0] is schema

    def test_numeric_strings_are_coerced(self, analyzer):
        template = ContractTemplate.from_dict({'name': 'T', 'schemas': [{
            'name': 'Pair', 'size': '12',
            'fields': [{'name': 'a', 'size': 4, 'offset': '0'}, {'name': 'b', 'size': 8, 'offset': '4'}],
        }]})
        schema = template.schemas[0]
        assert schema.size == 12
        assert [f.offset for f in schema.fields] == [0, 4]
        assert analyzer.validate_structure(template) == []

    def test_non_numeric_offset(self, analyzer):
        with pytest.raises(InputError, match="Malformed"):
            analyzer.coerce_template({'name': 'T', 'schemas': [
                {'name': 'S', 'fields': [{'name': 'a', 'size': 4, 'offset': 'start'}]}]})

    def test_malformed_template(self, analyzer):
        with pytest.raises(InputError):
            analyzer.analyze_contract({'instructions': []})
        with pytest.raises(InputError):
            analyzer.analyze_contract(42)


class TestStructuralChecks:

    def test_misaligned_offset(self, analyzer):
        report = analyzer.analyze_contract(MISALIGNED_SCHEMA)
        assert kinds(report.high_issues) == ['INVALID_FIELD_OFFSET']
        assert report.high_issues[0].message == (
            "Field 'flag' in schema 'VaultState' has offset 20, expected 12")

    def test_offsets_omitted_are_not_checked(self, analyzer):
        schema = ContractSchema(name='S', fields=[SchemaField(name='a', size=4), SchemaField(name='b', size=8)])
        assert analyzer.check_schema(schema) == []

    def test_schema_size_mismatch(self, analyzer):
        schema = ContractSchema(name='S', size=10,
                                fields=[SchemaField(name='a', size=4), SchemaField(name='b', size=8)])
        findings = analyzer.check_schema(schema)
        assert kinds(findings) == ['INVALID_SCHEMA_SIZE']
        assert "declares size 10, fields total 12" in findings[0].message

    def test_seedless_pda(self, analyzer):
        report = analyzer.analyze_contract(SEEDLESS_PDA)
        assert kinds(report.critical_issues) == ['MISSING_PDA_SEEDS']
        assert report.critical_issues[0].severity is Severity.CRITICAL
        assert report.critical_issues[0].cwe == 'CWE-345'
        assert report.is_secure is False

    def test_duplicate_account_reported_once(self, analyzer):
        instruction = InstructionTemplate(
            name='swap', accounts=[AccountMeta(name='pool'), AccountMeta(name='pool'), AccountMeta(name='pool')])
        assert kinds(analyzer.check_instruction(instruction)) == ['DUPLICATE_ACCOUNT']


class TestRenderSource:

    def test_helpers(self):
        assert snake_case('MyVault') == 'my_vault'
        assert pascal_case('set_fee') == 'SetFee'
        assert rust_type('pubkey') == 'Pubkey'
        assert rust_type({'vec': 'u8'}) == 'Vec<u8>'

    def test_accounts_struct(self):
        template = ContractTemplate(
            name='MyVault',
            instructions=[InstructionTemplate(
                name='deposit',
                args=[],
                accounts=[
                    AccountMeta(name='user', is_signer=True, is_writable=True),
                    AccountMeta(name='vault', is_writable=True, is_pda=True,
                                seeds=[PdaSeed(value='vault'), PdaSeed(path='user.key()')]),
                ],
            )],
        )
        source = render_source(template)
        assert "pub mod my_vault {" in source
        assert "pub fn deposit(ctx: Context<Deposit>) -> Result<()> {" in source
        assert "        Ok(())" in source
        assert "pub struct Deposit<'info> {" in source
        assert "    pub user: Signer<'info>," in source
        assert '    #[account(mut, seeds = [b"vault", user.key().as_ref()], bump)]' in source
        assert "    pub vault: AccountInfo<'info>," in source


class TestAnalyzeContract:

    def test_instruction_code_is_analyzed(self, analyzer):
        template = {
            'name': 'Vault',
            'instructions': [{
                'name': 'deposit',
                'args': [{'name': 'amount', 'type': 'u64'}],
                'accounts': [{'name': 'vault', 'isWritable': True}],
                'code': "let vault = &mut ctx.accounts.vault;\nvault.total = vault.total + amount;",
            }],
        }
        report = analyzer.analyze_contract(template)
        assert 'MISSING_SIGNER_CHECK' in kinds(report.critical_issues)
        assert report.is_secure is False

    def test_explicit_source_wins(self, analyzer, guarded_source):
        report = analyzer.analyze_contract({'name': 'Vault'}, code=guarded_source)
        assert report.findings == []
        assert report.is_secure is True

    def test_progress_is_forwarded(self, analyzer):
        calls = []
        analyzer.analyze_contract(MISALIGNED_SCHEMA, progress=lambda name, fraction: calls.append(name))
        assert calls[-1] == 'access_control'
