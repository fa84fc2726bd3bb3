"""Task graph model, eligibility evaluation and the orchestration loop."""
