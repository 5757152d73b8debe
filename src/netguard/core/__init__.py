"""NetGuard core: configuration, errors, logging, and the policy decision point."""
