"""CourseChain course-platform API core."""

__version__ = "0.1.0"
