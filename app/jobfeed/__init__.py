"""Change detection and real-time notification for case-management jobs."""
