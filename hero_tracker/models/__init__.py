"""
Domain models — combinations, hero rates, snapshots, and run records.

Submodules:
  combination — Combination axes (mode/input/region/tier/map) and SnapshotFilter
  snapshot    — RawHeroRate, HeroRate, NormalizedTable, Snapshot
  run         — RunRecord and RunError
"""
