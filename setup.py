from setuptools import setup

setup(
    name="ld-rfdecode",
    version="0.1.0",
    description="FFT overlap-save RF demodulator for LaserDisc captures",
    url="https://github.com/happycube/ld-decode",
    keywords=["video", "LaserDisc"],
    classifiers=[
        "License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)",
        "Programming Language :: Python :: 3",
        "Topic :: Multimedia :: Video :: Capture",
    ],
    packages=[
        "rfdecode",
    ],
    scripts=[
        "tools/bench_rf.py",
    ],
    python_requires=">=3.7",
    # These are just the minimal runtime dependencies for the Python scripts.
    # matplotlib is only needed for rfdecode.utils_plotting.
    install_requires=["matplotlib", "numba", "numpy", "scipy"],
    extras_require={
        "test": ["pytest"],
    },
    provides=["rfdecode"],
)
