"""
Execution financial ledger engine.

Pure computation over quarterly activity entries: no database access,
no Flask context.  The service layer (app/services/execution_service.py)
loads records and hierarchy, then hands plain values to this package.

Modules:
    codes       activity-code parsing, section semantics (flow vs stock)
    hierarchy   Category → SubCategory → Activity value objects
    payment_info  tagged payment representation + legacy migration
    entries     QuarterEntry, edits, immutable Ledger
    payables    expense → payable mapping table
    payments    payment tracker operations and totals
    balance     section totals, derived sections, row views
    equation    F == G accounting identity check
    edit_lock   per-quarter editability / visibility policy
    scheduler   trailing-edge debounced recompute
    calculation one full pass: balances, auto D/E values, equation, submit gate
    session     caller-owned ledger session tying edits to recompute
    drafts      keyed draft repositories + last-write-wins auto-saver
"""
