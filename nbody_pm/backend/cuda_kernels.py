"""
nbody_pm.backend.cuda_kernels
CUDA kernel templates for the device FFT pipeline.

Grids are stored as interleaved real/imaginary pairs ({T2}) in C order, so
element (i, j) of a (width, height) grid lives at ``i * height + j``. Axis 0
transforms run along i (stride ``height``), axis 1 along j (stride 1).

Templates use ``{T}``/``{T2}`` placeholders filled from ``_TYPE_SPECS``;
literal braces are doubled for ``str.format``.
"""

# ============================================================================
# TYPE SPECS
# ============================================================================

_TYPE_SPECS = {
    'float32': {
        'T': 'float',
        'T2': 'float2',
        'SINCOSPI': 'sincospif',
    },
    'float64': {
        'T': 'double',
        'T2': 'double2',
        'SINCOSPI': 'sincospi',
    },
}

# ============================================================================
# COOLEY-TUKEY STAGES
# ============================================================================

# One thread per element. dst[rev(pos)] = src[pos] along the chosen axis.
# Bit reversal is an involution, so the scatter covers every output once.
_BIT_REVERSE_KERNEL_TEMPLATE = r'''
extern "C" __global__
void fft_bit_reverse(const {T2}* __restrict__ src,
                     {T2}* __restrict__ dst,
                     const int width,
                     const int height,
                     const int axis,
                     const int log2n,
                     const int direction)
{{
    const int idx = blockDim.x * blockIdx.x + threadIdx.x;
    if (idx >= width * height) return;

    const int i = idx / height;
    const int j = idx - i * height;
    const unsigned int pos = (axis == 0) ? (unsigned int)i : (unsigned int)j;

    // __brev(x) >> 32 is undefined, length-1 axes are a plain copy
    const unsigned int rev = (log2n == 0) ? 0u : (__brev(pos) >> (32 - log2n));

    const int di = (axis == 0) ? (int)rev : i;
    const int dj = (axis == 0) ? j : (int)rev;
    dst[di * height + dj] = src[idx];
}}
'''

# One thread per output element of a radix-2 stage with butterfly span
# ``half``. For k = pos mod 2*half and m = k mod half:
#   out = E + W*O   if k <  half
#   out = E - W*O   if k >= half
# with E = src[start + m], O = src[start + m + half],
# W = exp(-direction * i * pi * m / half).
_BUTTERFLY_KERNEL_TEMPLATE = r'''
extern "C" __global__
void fft_butterfly(const {T2}* __restrict__ src,
                   {T2}* __restrict__ dst,
                   const int width,
                   const int height,
                   const int axis,
                   const int half,
                   const int direction)
{{
    const int idx = blockDim.x * blockIdx.x + threadIdx.x;
    if (idx >= width * height) return;

    const int i = idx / height;
    const int j = idx - i * height;
    const int pos = (axis == 0) ? i : j;
    const int stride = (axis == 0) ? height : 1;
    const int base = idx - pos * stride;

    const int size = half << 1;
    const int k = pos & (size - 1);
    const int m = k & (half - 1);
    const int start = pos - k;

    const {T2} e = src[base + (start + m) * stride];
    const {T2} o = src[base + (start + m + half) * stride];

    {T} s, c;
    {SINCOSPI}(-({T})direction * ({T})m / ({T})half, &s, &c);
    const {T} wr = c * o.x - s * o.y;
    const {T} wi = c * o.y + s * o.x;

    {T2} out;
    if (k < half) {{
        out.x = e.x + wr;
        out.y = e.y + wi;
    }} else {{
        out.x = e.x - wr;
        out.y = e.y - wi;
    }}
    dst[idx] = out;
}}
'''

_SCALE_KERNEL_TEMPLATE = r'''
extern "C" __global__
void fft_scale({T2}* __restrict__ data,
               const int total,
               const {T} factor)
{{
    const int idx = blockDim.x * blockIdx.x + threadIdx.x;
    if (idx >= total) return;
    data[idx].x *= factor;
    data[idx].y *= factor;
}}
'''

# ============================================================================
# NAIVE DFT (any size)
# ============================================================================

# Single dispatch, one thread per output frequency (u, v). The phase index
# is reduced modulo the axis length in 64-bit integers before conversion,
# which keeps large grids accurate. direction = -1 divides by width*height.
_DFT_NAIVE_KERNEL_TEMPLATE = r'''
extern "C" __global__
void dft_naive(const {T2}* __restrict__ src,
               {T2}* __restrict__ dst,
               const int width,
               const int height,
               const int direction)
{{
    const int idx = blockDim.x * blockIdx.x + threadIdx.x;
    if (idx >= width * height) return;

    const int u = idx / height;
    const int v = idx - u * height;

    {T} acc_re = 0;
    {T} acc_im = 0;
    {T} s, c;

    for (int x = 0; x < width; ++x) {{
        const long long pu = ((long long)u * x) % width;
        for (int y = 0; y < height; ++y) {{
            const long long pv = ((long long)v * y) % height;
            const {T} phase = -({T})direction * ({T})2
                * ((({T})pu) / ({T})width + (({T})pv) / ({T})height);
            {SINCOSPI}(phase, &s, &c);
            const {T2} a = src[x * height + y];
            acc_re += a.x * c - a.y * s;
            acc_im += a.x * s + a.y * c;
        }}
    }}

    if (direction < 0) {{
        const {T} inv_n = ({T})1 / (({T})width * ({T})height);
        acc_re *= inv_n;
        acc_im *= inv_n;
    }}

    {T2} out;
    out.x = acc_re;
    out.y = acc_im;
    dst[idx] = out;
}}
'''

# kernel name -> template
_FFT_KERNEL_TEMPLATES = {
    'fft_bit_reverse': _BIT_REVERSE_KERNEL_TEMPLATE,
    'fft_butterfly': _BUTTERFLY_KERNEL_TEMPLATE,
    'fft_scale': _SCALE_KERNEL_TEMPLATE,
    'dft_naive': _DFT_NAIVE_KERNEL_TEMPLATE,
}


def kernel_source(name: str, precision: str = 'float64') -> str:
    """Formatted CUDA source of kernel *name* for *precision*."""
    if name not in _FFT_KERNEL_TEMPLATES:
        raise ValueError(f"unknown kernel {name!r}, expected one of {list(_FFT_KERNEL_TEMPLATES)}")
    if precision not in _TYPE_SPECS:
        raise ValueError(f"precision must be 'float32' or 'float64', got {precision!r}")
    return _FFT_KERNEL_TEMPLATES[name].format(**_TYPE_SPECS[precision])


__all__ = [
    "_TYPE_SPECS",
    "_FFT_KERNEL_TEMPLATES",
    "kernel_source",
]
