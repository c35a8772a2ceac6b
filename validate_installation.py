#!/usr/bin/env python3
"""
Validation script for Directory Sync.

This script checks that the dependencies are installed and that the
reconciliation engine works against an in-memory directory file.
"""

import os
import sys
import tempfile
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
    ]

    optional_dependencies = [
        ("pytest (for the test suite)", "pytest"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    print("\n  Optional dependencies:")
    for pkg_name, import_name in optional_dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "directory_sync.models",
        "directory_sync.actions",
        "directory_sync.progress",
        "directory_sync.config",
        "directory_sync.sources",
        "directory_sync.notifications",
        "directory_sync.services.base",
        "directory_sync.services.ldap_service",
        "directory_sync.services.file_service",
        "directory_sync.main",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Run one reconciliation pass against a temporary directory file."""
    print("\n=== Functionality Validation ===")

    try:
        from directory_sync.models import Group
        from directory_sync.actions import group_actions_required
        from directory_sync.progress import ProgressReporter
        from directory_sync.services.file_service import FileDirectoryService

        with tempfile.TemporaryDirectory() as temp_dir:
            service = FileDirectoryService(os.path.join(temp_dir, 'directory.yaml'))
            desired = [Group(email='board@example.org', type='committee', members=['chair@example.org'])]

            actions = group_actions_required(service.get_groups(), desired)
            errors = actions.commit(service, ProgressReporter())
            service.save()
            print(f"  ✓ Commit of {actions.amount()} actions ({errors.amount()} failed)")

            reloaded = FileDirectoryService(os.path.join(temp_dir, 'directory.yaml'), create=False)
            if group_actions_required(reloaded.get_groups(), desired).amount() != 0:
                print("  ✗ Directory did not converge")
                return False
            print("  ✓ Directory converged")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    import subprocess

    result = subprocess.run([sys.executable, "-m", "directory_sync.main", "--help"],
                            capture_output=True, text=True)
    if result.returncode == 0:
        print("  ✓ Help command working")
        return True
    print("  ✗ Help command failed")
    return False


def main():
    """Run all validations."""
    print("Directory Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and fill in your directory settings")
        print("  2. Test with: python -m directory_sync.main --health-check")
        print("  3. Rehearse with: python -m directory_sync.main --dry-run")
        print("  4. Run sync: python -m directory_sync.main")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
