"""LLR collocation discovery: two-phase n-gram frequency aggregation and scoring."""
