"""Job construction: builder, branch names, experiments and pull request metadata."""
