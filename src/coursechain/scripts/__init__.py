"""Maintenance scripts for CourseChain deployments."""
