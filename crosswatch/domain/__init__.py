"""Domain layer: pure indicator math, decision logic, ML primitives and ports."""
