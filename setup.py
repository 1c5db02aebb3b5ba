import setuptools

with open('./requirements.txt') as f:
    INSTALL_REQUIRES = f.read().splitlines()

setuptools.setup(
    name='dockerfile-image-update',
    author='Dockerfile Image Update Maintainers',
    version='0.1.0',
    description='Keep Docker base images up to date across many GitHub repositories',
    long_description_content_type='text/x-rst',
    long_description=open('README.rst').read(),
    license='Apache License, Version 2.0',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    entry_points={'console_scripts': [
        'dockerfile-image-update = dockerfile_image_update.__main__:main',
    ]},
    include_package_data=True,
    install_requires=INSTALL_REQUIRES,
    extras_require={
        'tests': ['pytest', 'pytest-cov'],
    },
    python_requires='>=3.11',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Environment :: Console',
        'Operating System :: POSIX',
        'License :: OSI Approved :: Apache Software License',
    ],
)
