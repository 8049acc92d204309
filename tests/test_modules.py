"""
Unit tests for module package structure
Packages re-export their functions; resources are only declared when a
function is called
"""

import unittest
import sys
import os
import inspect

# Add project root to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class TestModuleStructure(unittest.TestCase):
    """Test that module packages follow the function-based pattern"""

    module_names = ['vpc', 'iam', 'eks', 'addons']

    def test_no_functions_in_package_init(self):
        """Package __init__ files only re-export from functions.py"""
        for module_name in self.module_names:
            with self.subTest(module=module_name):
                module = __import__(f'modules.{module_name}', fromlist=[''])
                functions = inspect.getmembers(module, inspect.isfunction)
                user_functions = [name for name, func in functions
                                  if func.__module__ == f'modules.{module_name}']
                self.assertEqual(user_functions, [])

    def test_exports_come_from_functions(self):
        for module_name in self.module_names:
            with self.subTest(module=module_name):
                module = __import__(f'modules.{module_name}', fromlist=[''])
                for name in module.__all__:
                    self.assertEqual(getattr(module, name).__module__, f'modules.{module_name}.functions')

    def test_top_level_entrypoints(self):
        import modules

        self.assertEqual(
            sorted(modules.__all__),
            ["create_addons_resources", "create_eks_resources", "create_iam_resources", "create_vpc_resources"]
        )
        for name in modules.__all__:
            self.assertTrue(callable(getattr(modules, name)))


if __name__ == '__main__':
    unittest.main()
