"""Terminal client for the CalcGrid coordinator."""
