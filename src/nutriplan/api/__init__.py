"""NutriPlan HTTP API."""
