from setuptools import setup, find_packages

with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name='gbss',
    version='0.1.0',
    description='Grey-matter-based spatial statistics: skeleton projection and lesion filling of GM, FA, ODI and '
                'ICVF maps',
    long_description_content_type='text/markdown',
    packages=find_packages(include=['gbss', 'gbss.*']),
    install_requires=requirements,
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'gbss=gbss.pipeline:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.9',
)
