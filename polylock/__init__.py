"""
Polymarket Dual-Lock Trader

Simulated multi-asset trading bot for the 15-minute crypto up/down markets
(BTC, SOL, XRP). Each asset runs its own state machine that enters on the
current leader, ladders resting bids on the opposite outcome and tries to
reach a dual-profit lock: a position that pays out more than it cost no
matter which outcome wins.

Entry point: python -m polylock.main

Key Modules:
- polylock.signals: Upstream conviction score, regime and wind (the "foreman")
- polylock.data: Rolling aggregates, leader/flip tracking, OBI, market data
- polylock.trader: Guardrails, lock detection, per-asset state machine, worker
- polylock.risk: Per-asset share/notional/open-order caps
- polylock.execution: Exchange interface and the simulated (shadow) exchange
"""

__version__ = "0.3.0"
