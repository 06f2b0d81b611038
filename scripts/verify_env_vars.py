import re
from pathlib import Path


def find_env_vars():
    """Find all environment variables declared as settings aliases or read directly."""
    env_vars = set()
    for py_file in Path("app").rglob("*.py"):
        content = py_file.read_text(encoding="utf-8", errors="ignore")
        env_vars.update(re.findall(r'alias=["\']([A-Z0-9_]+)["\']', content))
        env_vars.update(re.findall(r'os\.getenv\(["\']([A-Z0-9_]+)["\']', content))
    return sorted(env_vars)


def read_env_file(path: Path):
    names = set()
    if not path.exists():
        return names
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            names.add(line.split("=", 1)[0].strip())
    return names


def verify_against_env_file(path: str = ".env.example"):
    code_vars = set(find_env_vars())
    file_vars = read_env_file(Path(path))
    missing_in_file = sorted(code_vars - file_vars)
    unused_in_code = sorted(file_vars - code_vars)

    print("=== ENV VAR VERIFICATION ===")
    print(f"Code references: {len(code_vars)} unique vars")
    print(f"{path} has: {len(file_vars)} vars")
    print("")
    if missing_in_file:
        print(f"MISSING IN {path} ({len(missing_in_file)}):")
        for v in missing_in_file:
            print(f"  - {v}")
    else:
        print(f"No missing vars against {path}.")
    print("")
    if unused_in_code:
        print(f"UNUSED IN CODE ({len(unused_in_code)}):")
        for v in unused_in_code:
            print(f"  - {v}")
    else:
        print("No unused vars.")


if __name__ == "__main__":
    verify_against_env_file()
