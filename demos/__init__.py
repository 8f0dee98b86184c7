"""
Robust positioning demonstrations.

Examples:
    - Comparison of RANSAC, LMedS, MSAC, PROSAC and PROMedS under NLOS
      ranging outliers
"""
