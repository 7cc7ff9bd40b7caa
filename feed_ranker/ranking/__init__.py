"""
Ranking pipeline components, leaves first:

  context      — viewer's social graph and interest signals
  candidates   — recent / image / viral candidate pool
  scorer       — relevance, engagement, freshness, diversity
  diversifier  — per-author cap over the ranked pool
  impressions  — served-post log and repeat cooldown
  cold_start   — trending and popularity pages
  cache        — request fingerprint and page cache
  writer       — background queue for best-effort writes
  ranker       — the request orchestrator
"""
