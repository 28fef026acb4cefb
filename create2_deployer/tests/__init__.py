"""
create2-deployer test package

Run with:
    pytest create2_deployer/tests/ -v
"""
