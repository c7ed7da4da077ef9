"""GitHub integration: pull request comments and repository operations."""
