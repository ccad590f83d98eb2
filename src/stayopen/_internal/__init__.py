"""Internal APIs for stayopen. Subject to change without notice."""
