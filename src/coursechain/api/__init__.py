"""HTTP API for the CourseChain application."""
