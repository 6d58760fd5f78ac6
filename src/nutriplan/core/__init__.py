"""NutriPlan core: configuration, exceptions and logging."""
