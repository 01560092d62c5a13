SCHEMA_VERSION = 1

SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS schema_version (
  version INTEGER PRIMARY KEY,
  applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS managed_products (
  id TEXT PRIMARY KEY,
  slug TEXT NOT NULL UNIQUE,
  name TEXT NOT NULL,
  strategy_profile TEXT NOT NULL,
  is_guaranteed INTEGER NOT NULL,
  performance_fee_rate TEXT NOT NULL,
  reserve_coverage_min TEXT NOT NULL,
  status TEXT NOT NULL,
  is_active INTEGER NOT NULL,
  agent_id TEXT NULL,
  trader_address TEXT NULL
);

CREATE TABLE IF NOT EXISTS managed_terms (
  id TEXT PRIMARY KEY,
  product_id TEXT NOT NULL REFERENCES managed_products(id),
  label TEXT NOT NULL,
  duration_days INTEGER NOT NULL,
  target_return_min TEXT NOT NULL,
  target_return_max TEXT NOT NULL,
  max_drawdown TEXT NOT NULL,
  min_yield_rate TEXT NOT NULL,
  performance_fee_rate TEXT NULL,
  max_subscription_amount TEXT NULL,
  is_active INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS managed_subscriptions (
  id TEXT PRIMARY KEY,
  wallet_address TEXT NOT NULL,
  product_id TEXT NOT NULL REFERENCES managed_products(id),
  term_id TEXT NOT NULL REFERENCES managed_terms(id),
  principal TEXT NOT NULL,
  high_water_mark TEXT NOT NULL,
  current_equity TEXT NOT NULL,
  status TEXT NOT NULL,
  start_at TEXT NULL,
  end_at TEXT NULL,
  matured_at TEXT NULL,
  settled_at TEXT NULL,
  is_trial INTEGER NOT NULL,
  trial_ends_at TEXT NULL,
  copy_config_id TEXT NULL,
  accepted_terms_at TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_managed_subscriptions_wallet_status
ON managed_subscriptions(wallet_address, status);
CREATE INDEX IF NOT EXISTS idx_managed_subscriptions_status_endat
ON managed_subscriptions(status, end_at);

CREATE TABLE IF NOT EXISTS managed_nav_snapshots (
  id TEXT PRIMARY KEY,
  subscription_id TEXT NOT NULL REFERENCES managed_subscriptions(id),
  snapshot_at TEXT NOT NULL,
  nav TEXT NOT NULL,
  equity TEXT NOT NULL,
  period_return TEXT NOT NULL,
  cumulative_return TEXT NOT NULL,
  drawdown TEXT NOT NULL,
  price_source TEXT NOT NULL,
  is_fallback_price INTEGER NOT NULL,
  UNIQUE(subscription_id, snapshot_at)
);

CREATE TABLE IF NOT EXISTS managed_settlements (
  id TEXT PRIMARY KEY,
  subscription_id TEXT NOT NULL UNIQUE REFERENCES managed_subscriptions(id),
  status TEXT NOT NULL,
  principal TEXT NOT NULL,
  final_equity TEXT NOT NULL,
  gross_pnl TEXT NOT NULL,
  high_water_mark TEXT NOT NULL,
  hwm_eligible_profit TEXT NOT NULL,
  performance_fee_rate TEXT NOT NULL,
  performance_fee TEXT NOT NULL,
  pre_guarantee_payout TEXT NOT NULL,
  guaranteed_payout TEXT NULL,
  reserve_topup TEXT NOT NULL,
  final_payout TEXT NOT NULL,
  settled_at TEXT NOT NULL,
  error_message TEXT NULL
);

CREATE TABLE IF NOT EXISTS reserve_fund_ledger (
  id TEXT PRIMARY KEY,
  entry_type TEXT NOT NULL,
  amount TEXT NOT NULL,
  balance_after TEXT NOT NULL,
  subscription_id TEXT NULL,
  note TEXT NULL,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS managed_principal_reservation_ledger (
  id TEXT PRIMARY KEY,
  wallet_address TEXT NOT NULL,
  subscription_id TEXT NOT NULL,
  entry_type TEXT NOT NULL,
  amount TEXT NOT NULL,
  idempotency_key TEXT NOT NULL UNIQUE,
  managed_qualified_balance TEXT NOT NULL,
  reserved_balance_after TEXT NOT NULL,
  available_balance_after TEXT NOT NULL,
  note TEXT NULL,
  created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_principal_reservation_wallet
ON managed_principal_reservation_ledger(wallet_address, entry_type);

CREATE TABLE IF NOT EXISTS net_deposit_ledger (
  id TEXT PRIMARY KEY,
  wallet_address TEXT NOT NULL,
  direction TEXT NOT NULL,
  equivalent_amount TEXT NOT NULL,
  created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_net_deposit_wallet
ON net_deposit_ledger(wallet_address, direction);

CREATE TABLE IF NOT EXISTS managed_risk_events (
  id TEXT PRIMARY KEY,
  subscription_id TEXT NOT NULL,
  severity TEXT NOT NULL,
  metric TEXT NOT NULL,
  threshold TEXT NOT NULL,
  observed_value TEXT NOT NULL,
  action TEXT NOT NULL,
  description TEXT NULL,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS managed_settlement_executions (
  id TEXT PRIMARY KEY,
  settlement_id TEXT NOT NULL UNIQUE REFERENCES managed_settlements(id),
  subscription_id TEXT NOT NULL,
  wallet_address TEXT NOT NULL,
  gross_pnl TEXT NOT NULL,
  profit_fee_trade_id TEXT NOT NULL,
  profit_fee_scope TEXT NOT NULL,
  commission_status TEXT NOT NULL,
  commission_skipped_reason TEXT NULL,
  commission_error TEXT NULL,
  commission_settled_at TEXT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS execution_configs (
  id TEXT PRIMARY KEY,
  wallet_address TEXT NOT NULL,
  trader_address TEXT NOT NULL,
  agent_id TEXT NOT NULL,
  strategy_profile TEXT NOT NULL,
  is_active INTEGER NOT NULL,
  created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_execution_configs_lookup
ON execution_configs(wallet_address, trader_address, agent_id, is_active);

CREATE TABLE IF NOT EXISTS execution_trades (
  id TEXT PRIMARY KEY,
  config_id TEXT NOT NULL,
  status TEXT NOT NULL,
  realized_pnl TEXT NULL,
  executed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_execution_trades_config
ON execution_trades(config_id, status);

CREATE TABLE IF NOT EXISTS execution_positions (
  id TEXT PRIMARY KEY,
  subscription_id TEXT NULL,
  wallet_address TEXT NOT NULL,
  config_id TEXT NULL,
  token_id TEXT NOT NULL,
  balance TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
"""
