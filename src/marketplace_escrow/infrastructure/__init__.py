"""Infrastructure adapters: persistence for the escrow ledger."""
