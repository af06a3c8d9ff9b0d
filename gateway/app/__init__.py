"""Application assembly: factory, lifespan and background task tracking."""
