"""Random-trade simulation over the pricing engine."""
