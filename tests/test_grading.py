"""Tests for engine.grading -- bufferbloat letter grades."""

import unittest

from engine.grading import grade_bufferbloat, grade_with_color


class TestGradeBufferbloat(unittest.TestCase):
    def test_a(self):
        self.assertEqual(grade_bufferbloat(0.0), "A")
        self.assertEqual(grade_bufferbloat(4.9), "A")

    def test_b(self):
        self.assertEqual(grade_bufferbloat(5.0), "B")
        self.assertEqual(grade_bufferbloat(29.9), "B")

    def test_c(self):
        self.assertEqual(grade_bufferbloat(30.0), "C")

    def test_d(self):
        self.assertEqual(grade_bufferbloat(60.0), "D")
        self.assertEqual(grade_bufferbloat(199.0), "D")

    def test_f(self):
        self.assertEqual(grade_bufferbloat(200.0), "F")
        self.assertEqual(grade_bufferbloat(5000.0), "F")


class TestGradeWithColor(unittest.TestCase):
    def test_colors(self):
        self.assertEqual(grade_with_color(1.0), ("A", "green"))
        self.assertEqual(grade_with_color(45.0), ("C", "yellow"))
        self.assertEqual(grade_with_color(500.0), ("F", "red"))


if __name__ == "__main__":
    unittest.main()
