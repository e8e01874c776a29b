"""Risk policy tables, position sizing kernel and admission control."""
