import subprocess

import nibabel as nib
import numpy as np
import pytest

from gbss import fsl
from gbss.exceptions import FSLCommandError


@pytest.fixture
def fake_fsl(monkeypatch):
    calls = list()

    def which(command):
        return f"/usr/local/fsl/bin/{command}"

    def run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[0] == "tbss_skeleton" and "-p" in cmd:
            output_file = cmd[8]
            shape = nib.load(cmd[7]).shape[:3]
        else:
            output_file = cmd[-1]
            shape = nib.load(cmd[2]).shape
        nib.Nifti1Image(np.ones(shape, dtype=np.float32), np.eye(4)).to_filename(output_file)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(fsl.shutil, "which", which)
    monkeypatch.setattr(fsl.subprocess, "run", run)
    return calls


def test_tbss_skeleton_project_command(fake_fsl):
    mean_map = np.zeros((3, 3, 3))
    stack = np.zeros((3, 3, 3, 1))
    projected = fsl.tbss_skeleton_project(mean_map, 0.65, mean_map, mean_map, stack, np.eye(4), value_stack=stack)
    cmd = fake_fsl[0]
    assert cmd[:4] == ["tbss_skeleton", "-i", cmd[2], "-p"]
    assert cmd[4] == "0.65"
    assert cmd[5].endswith("GM_mean_skeleton_mask_dst.nii.gz")
    assert cmd[6].endswith("zero.nii.gz")
    assert cmd[7].endswith("all_GM.nii.gz")
    assert cmd[9] == "-a"
    assert projected.shape == (3, 3, 3, 1)


def test_tbss_skeleton_and_distancemap(fake_fsl):
    volume = np.zeros((4, 4, 4))
    assert fsl.tbss_skeleton(volume, np.eye(4)).shape == (4, 4, 4)
    assert fsl.distancemap(volume, np.eye(4)).shape == (4, 4, 4)
    assert [cmd[0] for cmd in fake_fsl] == ["tbss_skeleton", "distancemap"]
    assert fake_fsl[0][3] == "-o"


def test_missing_fsl(monkeypatch):
    monkeypatch.setattr(fsl.shutil, "which", lambda command: None)
    with pytest.raises(FileNotFoundError, match="distancemap"):
        fsl.distancemap(np.zeros((2, 2, 2)), np.eye(4))


def test_failed_command(monkeypatch):
    monkeypatch.setattr(fsl.subprocess, "run",
                        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="bad input"))
    with pytest.raises(FSLCommandError):
        fsl.run_fsl_command(["tbss_skeleton", "-i", "missing.nii.gz"])
