"""Configuration, errors and logging for CourseChain."""
