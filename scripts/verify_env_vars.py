import re
from pathlib import Path


def find_env_vars():
    """Find all environment variables declared as settings aliases."""
    env_vars = set()
    for py_file in Path("manuflix").rglob("*.py"):
        content = py_file.read_text(encoding="utf-8", errors="ignore")
        env_vars.update(re.findall(r'alias=["\']([A-Z0-9_]+)["\']', content))
    return sorted(env_vars)


def read_env_example(path: Path = Path(".env.example")):
    names = set()
    if not path.exists():
        return names
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        names.add(line.split("=", 1)[0].strip())
    return names


def verify_against_env_example():
    code_vars = set(find_env_vars())
    example_vars = read_env_example()
    missing_in_example = sorted(code_vars - example_vars)
    unused_in_code = sorted(example_vars - code_vars)

    print("=== ENV VAR VERIFICATION ===")
    print(f"Code references: {len(code_vars)} unique vars")
    print(f".env.example has: {len(example_vars)} vars")
    print("")
    if missing_in_example:
        print(f"MISSING IN .env.example ({len(missing_in_example)}):")
        for v in missing_in_example:
            print(f"  - {v}")
    else:
        print("No missing vars against .env.example.")
    print("")
    if unused_in_code:
        print(f"UNUSED IN CODE ({len(unused_in_code)}):")
        for v in unused_in_code:
            print(f"  - {v}")
    else:
        print("No unused .env.example vars.")


if __name__ == "__main__":
    verify_against_env_example()
