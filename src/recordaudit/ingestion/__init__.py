"""Document resolution, PDF fetching and materialization."""
