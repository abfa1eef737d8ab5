"""
Shared test fixtures for the SynthGuard test suite.

Provides sample contract sources (unguarded transfer, guarded Anchor vault,
loop accumulator), a default AnalyzerConfig and ready-built analyzers.
"""

import pytest

from synthguard.cfg_builder import CFGBuilder
from synthguard.config_manager import AnalyzerConfig
from synthguard.security_analyzer import SecurityAnalyzer


# ── Sample contract sources ─────────────────────────────────────

UNGUARDED_TRANSFER_RUST = """\
pub fn pay(ctx: Context<Pay>, amount: u64) -> Result<()> {
    let recipient = &ctx.accounts.recipient;
    recipient.transfer(amount);
    Ok(())
}
"""

GUARDED_VAULT_RUST = """\
use anchor_lang::prelude::*;

#[program]
pub mod vault_program {
    use super::*;

    pub fn withdraw(ctx: Context<Withdraw>, amount: u64) -> Result<()> {
        let vault = &mut ctx.accounts.vault;
        require!(ctx.accounts.authority.is_signer, VaultError::Unauthorized);
        require!(!vault.is_locked, VaultError::Locked);
        vault.is_locked = true;
        vault.balance = vault.balance.checked_sub(amount).ok_or(VaultError::Insufficient)?;
        require!(token::transfer(cpi_ctx, amount).is_ok(), VaultError::TransferFailed);
        vault.is_locked = false;
        Ok(())
    }
}

#[derive(Accounts)]
pub struct Withdraw<'info> {
    #[account(mut, has_one = authority)]
    pub vault: Account<'info, Vault>,
    pub authority: Signer<'info>,
}
"""

LOOP_ACCUMULATOR_RUST = """\
fn accumulate(values: Vec<u64>) -> u64 {
    let mut total = 0;
    let mut i = 0;
    while i < 10 {
        total = total + i;
        i = i + 1;
    }
    return total;
}
"""

REENTRANT_BANK_SOLIDITY = """\
contract Bank {
    function withdraw(uint256 amount) external {
        (bool ok, ) = msg.sender.call{value: amount}("");
        balances[msg.sender] -= amount;
    }
}
"""


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def config():
    return AnalyzerConfig()


@pytest.fixture
def builder():
    return CFGBuilder()


@pytest.fixture
def security_analyzer(config):
    return SecurityAnalyzer(config)


@pytest.fixture
def unguarded_source():
    return UNGUARDED_TRANSFER_RUST


@pytest.fixture
def guarded_source():
    return GUARDED_VAULT_RUST


@pytest.fixture
def loop_source():
    return LOOP_ACCUMULATOR_RUST


@pytest.fixture
def reentrant_solidity():
    return REENTRANT_BANK_SOLIDITY


def node_with_code(cfg, code):
    """First node whose code equals ``code``."""
    for node in cfg.nodes.values():
        if node.code == code:
            return node
    raise AssertionError(f"no node with code {code!r}")


@pytest.fixture
def find_node():
    return node_with_code
